"""Custom Textual widgets used by the pgdesk UI."""

from .connection_sidebar import ConnectionSidebar
from .query_editor import QueryEditor, ResultView
from .status_bar import StatusBar

__all__ = ["ConnectionSidebar", "QueryEditor", "ResultView", "StatusBar"]
