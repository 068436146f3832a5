"""Client-side application state: current user, sync indicator, toasts and theme."""

from __future__ import annotations

import enum
import time
import uuid
from dataclasses import dataclass, field
from typing import Optional


class Module(enum.Enum):
    """Sections of the application, in navigation order."""

    DASHBOARD = ("Dashboard", "📊", "/")
    INVENTORY = ("Inventory", "📦", "/inventory")
    SHIPPING = ("Shipping", "🚚", "/shipping")
    RECEIVING = ("Receiving", "📥", "/receiving")
    DELIVERIES = ("Deliveries", "🗺️", "/deliveries")
    CUSTOMERS = ("Customers", "👥", "/customers")
    TIMESHEETS = ("Timesheets", "⏰", "/timesheets")
    SETTINGS = ("Settings", "⚙️", "/settings")

    def title(self) -> str:
        return self.value[0]

    def icon(self) -> str:
        return self.value[1]

    def path(self) -> str:
        return self.value[2]


class ToastType(enum.Enum):
    SUCCESS = "success"
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


class Theme(enum.Enum):
    LIGHT = "light"
    DARK = "dark"


@dataclass
class User:
    """The signed-in user."""

    id: str
    username: str
    full_name: str
    role: str


@dataclass
class ClientSyncStatus:
    """Sync indicator shown by the client."""

    is_syncing: bool = False
    is_online: bool = False
    pending_changes: int = 0
    last_sync: Optional[str] = None


@dataclass
class Toast:
    """A transient notification."""

    id: str
    message: str
    toast_type: ToastType
    timestamp: int


@dataclass
class AppState:
    """Global state shared by the client views."""

    user: Optional[User] = None
    sync_status: ClientSyncStatus = field(default_factory=ClientSyncStatus)
    current_module: Module = Module.DASHBOARD
    toasts: list[Toast] = field(default_factory=list)
    theme: Theme = Theme.DARK

    def toast(self, message: str, toast_type: ToastType) -> Toast:
        """Add a notification and return it."""
        notification = Toast(
            id=str(uuid.uuid4()),
            message=message,
            toast_type=toast_type,
            timestamp=int(time.time()),
        )
        self.toasts.append(notification)
        return notification

    def dismiss_toast(self, toast_id: str) -> None:
        """Remove the notification with the given id, if present."""
        self.toasts = [t for t in self.toasts if t.id != toast_id]

    def toggle_theme(self) -> Theme:
        """Switch between light and dark and return the new theme."""
        self.theme = Theme.LIGHT if self.theme is Theme.DARK else Theme.DARK
        return self.theme