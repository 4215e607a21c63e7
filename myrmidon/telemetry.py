"""
Myrmidon telemetry -- point-in-time status snapshots of one agent.

A snapshot bundles everything an operator needs to see that a rover is
healthy: mode, controller state, consensus headings, neighbors, the last
velocity command, parse-failure counters and watchdog status.
"""

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional


@dataclass
class AgentSnapshot:
    """Point-in-time snapshot of one agent."""

    agent_id: str = ""
    mode: int = 0
    autonomous: bool = False
    state: str = ""
    pose: Dict[str, float] = field(default_factory=dict)
    neighbors: List[str] = field(default_factory=list)
    bearing: float = 0.0
    global_heading: float = 0.0
    local_heading: float = 0.0
    last_command: Optional[Dict[str, float]] = None
    parse_failures: int = 0
    unknown_agents: Dict[str, int] = field(default_factory=dict)
    dropped_messages: int = 0
    observed_agents: int = 0
    watchdog: Dict[str, Any] = field(default_factory=dict)
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to a plain dict."""
        return asdict(self)


def render_snapshot(snap: AgentSnapshot, console=None) -> None:
    """Print *snap* as a rich table."""
    from rich.console import Console
    from rich.table import Table

    console = console or Console()
    table = Table(title=f"Agent: {snap.agent_id}", show_header=True)
    table.add_column("Field", style="bold")
    table.add_column("Value")

    mode_style = "[green]autonomous[/]" if snap.autonomous else "[yellow]manual[/]"
    table.add_row("Mode", f"{snap.mode} ({mode_style})")
    table.add_row("State", snap.state or "-")
    pose = snap.pose or {}
    table.add_row(
        "Pose",
        f"x={pose.get('x', 0.0):.3f} y={pose.get('y', 0.0):.3f} "
        f"theta={pose.get('theta', 0.0):.3f}",
    )
    table.add_row("Neighbors", ", ".join(snap.neighbors) or "none")
    table.add_row("Bearing", f"{snap.bearing:.3f}")
    table.add_row("Global heading", f"{snap.global_heading:.3f}")
    table.add_row("Local heading", f"{snap.local_heading:.3f}")
    if snap.last_command:
        table.add_row(
            "Last command",
            f"linear={snap.last_command['linear']:.3f} angular={snap.last_command['angular']:.3f}",
        )
    else:
        table.add_row("Last command", "-")

    failures = str(snap.parse_failures)
    if snap.parse_failures:
        failures = f"[red]{failures}[/]"
    table.add_row("Parse failures", failures)
    if snap.unknown_agents:
        table.add_row(
            "Unknown agents",
            ", ".join(f"{name} x{count}" for name, count in sorted(snap.unknown_agents.items())),
        )
    if snap.dropped_messages:
        table.add_row("Dropped messages", f"[yellow]{snap.dropped_messages}[/]")
    table.add_row("Agents observed", str(snap.observed_agents))

    wd = snap.watchdog or {}
    wd_text = "disabled"
    if wd.get("enabled"):
        wd_text = f"{wd.get('timeout_s')}s timeout, fired {wd.get('fire_count', 0)}x"
        if wd.get("triggered"):
            wd_text = f"[red]TRIGGERED[/] ({wd_text})"
    table.add_row("Watchdog", wd_text)
    for err in snap.errors[-3:]:
        table.add_row("[red]Error[/]", err)

    console.print(table)
