from ui.display import (
    console,
    display_header,
    display_analysis_summary,
    render_dashboard,
    contracts_table,
    realized_vol_table,
    iv_rv_table,
    smile_table,
    alerts_table,
)
from ui.charts import smile_figure, write_smile_html

__all__ = [
    'console',
    'display_header',
    'display_analysis_summary',
    'render_dashboard',
    'contracts_table',
    'realized_vol_table',
    'iv_rv_table',
    'smile_table',
    'alerts_table',
    'smile_figure',
    'write_smile_html',
]
