"""
Spreadsheet export of the cash-flow projection
"""
from io import BytesIO

import pandas as pd


SUMMARY_COLUMNS = ['date_bucket', 'bucket_end', 'paid_amount', 'expected_amount', 'installment_count']
DETAIL_COLUMNS = ['date_bucket', 'installment_id', 'payment_plan_id', 'student_name', 'college_name',
                  'amount', 'status', 'student_due_date', 'paid_date']


def cash_flow_frames(projection):
    """Summary and detail DataFrames for a cash-flow projection"""
    summary = pd.DataFrame(
        [{column: row[column] for column in SUMMARY_COLUMNS} for row in projection],
        columns=SUMMARY_COLUMNS,
    )
    details = pd.DataFrame(
        [
            {'date_bucket': row['date_bucket'], **item}
            for row in projection
            for item in row['installments']
        ],
        columns=DETAIL_COLUMNS,
    )

    # Excel has no Decimal type
    for frame, columns in ((summary, ['paid_amount', 'expected_amount']), (details, ['amount'])):
        for column in columns:
            frame[column] = frame[column].astype(float)
    return summary, details


def cash_flow_workbook(projection) -> bytes:
    """Render the projection as an .xlsx workbook with Summary and Installments sheets"""
    summary, details = cash_flow_frames(projection)

    output = BytesIO()
    with pd.ExcelWriter(output, engine='openpyxl') as writer:
        summary.to_excel(writer, sheet_name='Summary', index=False)
        details.to_excel(writer, sheet_name='Installments', index=False)
    output.seek(0)
    return output.getvalue()
