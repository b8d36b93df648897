"""Action handlers and the registry that resolves them.

Built-in actions
----------------

- ``fs.read_file``, ``fs.list_dir``: low risk, filesystem.
- ``fs.write_file``, ``fs.replace_text``, ``fs.ensure_dir``: medium risk,
  approval by default.
- ``shell.run``: high risk, shell and process capabilities.
- ``web.fetch_url``: medium risk, network.
- ``browser.open_url``: medium risk, browser.
"""

from .base import ActionContext, ActionHandler, ActionResult, BaseAction
from .browser import BrowserOpenUrlAction
from .fs_ops import EnsureDirAction, ListDirAction, ReadFileAction, ReplaceTextAction, WriteFileAction
from .registry import ActionRegistry
from .shell import ShellRunAction
from .web import FetchUrlAction

__all__ = [
    "ActionContext",
    "ActionHandler",
    "ActionRegistry",
    "ActionResult",
    "BaseAction",
    "BrowserOpenUrlAction",
    "EnsureDirAction",
    "FetchUrlAction",
    "ListDirAction",
    "ReadFileAction",
    "ReplaceTextAction",
    "ShellRunAction",
    "WriteFileAction",
]
