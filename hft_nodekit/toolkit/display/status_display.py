"""Rich renderings of nodes, verification results and audit logs."""

from typing import Any, Dict, Iterable, Optional, Tuple

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text
from rich.box import ROUNDED

from hft_nodekit.toolkit.core.models import (
    ControlCommand, FailoverOperation, Node, VerificationResult,
)
from hft_nodekit.toolkit.core.utils import format_duration, format_timestamp

from .constants import (
    APP_NAME, PADDING_NARROW, PADDING_STANDARD, STATE_STYLES, STATUS_STYLES,
    STYLE_BRIGHT_CYAN, STYLE_CYAN, STYLE_CYAN_BOLD, STYLE_DIM, STYLE_MAGENTA_BOLD,
)


class StatusDisplay:
    """Prints control-plane state to the terminal."""

    def __init__(self, console: Optional[Console] = None, timezone: Optional[str] = None):
        self.console = console or Console()
        self.timezone = timezone

    def _styled_panel(self, content: Any, title: str, border_style: str = STYLE_BRIGHT_CYAN,
                      padding: Tuple[int, int] = PADDING_STANDARD) -> Panel:
        return Panel(
            content,
            title=f"[{STYLE_CYAN_BOLD}]{APP_NAME}[/] | {title}",
            title_align="left",
            border_style=border_style,
            box=ROUNDED,
            padding=padding,
        )

    def _ts(self, value) -> str:
        return format_timestamp(value, timezone=self.timezone)

    @staticmethod
    def state_text(state: str) -> Text:
        return Text(state, style=STATE_STYLES.get(state, STYLE_DIM))

    @staticmethod
    def status_text(status: str) -> Text:
        icon, style = STATUS_STYLES.get(status, ("?", STYLE_DIM))
        return Text(f"{icon} {status}", style=style)

    def show_nodes(self, nodes: Iterable[Node]) -> None:
        table = Table(box=ROUNDED, header_style=STYLE_CYAN_BOLD, expand=False)
        table.add_column("Node")
        table.add_column("Address")
        table.add_column("Provider")
        table.add_column("Region")
        table.add_column("Role")
        table.add_column("State")
        table.add_column("Failures", justify="right")
        table.add_column("Last verified")

        for node in nodes:
            table.add_row(
                node.id,
                node.address,
                node.provider,
                node.region or "-",
                Text(node.role.value, style=STYLE_MAGENTA_BOLD if node.is_primary else STYLE_DIM),
                self.state_text(node.running_state.value),
                str(node.consecutive_failures),
                self._ts(node.last_verified_at),
            )
        self.console.print(self._styled_panel(table, "Nodes", padding=PADDING_NARROW))

    def show_verification(self, node: Node, result: VerificationResult, action: Optional[str] = None) -> None:
        grid = Table.grid(padding=(0, 2))
        grid.add_column(style=STYLE_CYAN)
        grid.add_column()

        if action:
            grid.add_row("Action", action)
        grid.add_row("State", self.state_text(result.state.value))

        signal = result.signal
        if signal is None:
            grid.add_row("Signal", Text("query failed", style=STATE_STYLES["error"]))
        elif signal.exists:
            started = signal.payload.started_at if signal.payload else None
            grid.add_row("Signal", f"present, age {format_duration(signal.age_seconds)}"
                                   + (f" (since {self._ts(started)})" if started else ""))
        else:
            grid.add_row("Signal", "absent")

        if result.liveness is None:
            grid.add_row("Liveness", Text("query failed", style=STATE_STYLES["error"]))
        else:
            grid.add_row("Liveness", "container up" if result.liveness else "container down")
        grid.add_row("Via", result.transport.value if result.transport else "-")
        grid.add_row("Checked", self._ts(result.checked_at))
        if result.detail:
            grid.add_row("Detail", Text(result.detail, style=STYLE_DIM))

        border = STATE_STYLES.get(result.state.value, STYLE_BRIGHT_CYAN)
        self.console.print(self._styled_panel(grid, f"{node.id} ({node.address})", border_style=border))

    def show_operation(self, operation: FailoverOperation) -> None:
        table = Table(box=ROUNDED, header_style=STYLE_CYAN_BOLD)
        table.add_column("#", justify="right")
        table.add_column("Stage")
        table.add_column("Status")
        table.add_column("Time")
        table.add_column("Detail", overflow="fold")

        for index, stage in enumerate(operation.stages, 1):
            table.add_row(
                str(index),
                stage.name,
                self.status_text(stage.status.value),
                self._ts(stage.timestamp),
                stage.detail or "",
            )

        title = (f"Failover {operation.from_node_id or '(none)'} -> {operation.to_node_id} "
                 f"[{operation.status.value}]")
        _, style = STATUS_STYLES.get(operation.status.value, ("", STYLE_BRIGHT_CYAN))
        self.console.print(self._styled_panel(table, title, border_style=style, padding=PADDING_NARROW))
        self.console.print(Text(f"Operation id: {operation.id}", style=STYLE_DIM))

    def show_operations(self, operations: Iterable[FailoverOperation]) -> None:
        table = Table(box=ROUNDED, header_style=STYLE_CYAN_BOLD)
        table.add_column("Id")
        table.add_column("Created")
        table.add_column("From")
        table.add_column("To")
        table.add_column("Start after")
        table.add_column("Status")
        table.add_column("Completed stages", overflow="fold")

        for op in operations:
            table.add_row(
                op.id[:12],
                self._ts(op.created_at),
                op.from_node_id or "-",
                op.to_node_id,
                "yes" if op.start_bot_after_switch else "no",
                self.status_text(op.status.value),
                ", ".join(op.completed_stages()),
            )
        self.console.print(self._styled_panel(table, "Failover operations", padding=PADDING_NARROW))

    def show_commands(self, commands: Iterable[ControlCommand]) -> None:
        table = Table(box=ROUNDED, header_style=STYLE_CYAN_BOLD)
        table.add_column("Time")
        table.add_column("Node")
        table.add_column("Action")
        table.add_column("Via")
        table.add_column("Result")
        table.add_column("Detail", overflow="fold")

        for cmd in commands:
            table.add_row(
                self._ts(cmd.created_at),
                cmd.target_node_id,
                cmd.action.value,
                cmd.transport_used.value if cmd.transport_used else "-",
                self.status_text(cmd.result.value),
                cmd.detail,
            )
        self.console.print(self._styled_panel(table, "Control command log", padding=PADDING_NARROW))

    def show_health(self, node: Node, info: Dict[str, Any], via: str) -> None:
        uptime = info.get("uptime_seconds")
        version = info.get("version") or "-"
        self.console.print(
            f"[{STYLE_CYAN}]{node.id}[/] healthy via {via} | version {version} | "
            f"uptime {format_duration(uptime) if isinstance(uptime, (int, float)) else '-'}"
        )

    def show_text(self, title: str, body: str) -> None:
        self.console.print(self._styled_panel(Text(body or "(no output)"), title, padding=PADDING_NARROW))
