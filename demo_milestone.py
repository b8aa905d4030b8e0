"""
demo_milestone.py – Console walkthrough of the Milestone Lifecycle Engine

Run:
    python demo_milestone.py

Uses a throwaway SQLite file in a temporary directory; nothing is written
to the configured MILESTONE_DB_PATH.  See .env.example for the defaults
that apply when a draft omits its settings.
"""

from __future__ import annotations

import logging
import sys
import tempfile
from datetime import date, timedelta
from pathlib import Path

# ── make src/ importable without installing the package ──────────────────────
sys.path.insert(0, str(Path(__file__).parent / "src"))

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich import box

from milestone_engine.api import ApiResponse, MilestoneApi
from milestone_engine.config import get_settings

console = Console()

STATE_STYLE = {
    "draft-invalid":  "bold red",
    "open":           "bold cyan",
    "ready-to-close": "bold green",
    "closed":         "dim white",
}

SIGNOFF_ICON = {
    "pending":           "[dim]…[/dim]",
    "approved":          "[bold green]✓[/bold green]",
    "rejected":          "[bold red]✗[/bold red]",
    "requested-changes": "[bold yellow]~[/bold yellow]",
}


# ─── Display helpers ─────────────────────────────────────────────────────────

def _bar(percent: int, width: int = 16) -> str:
    filled = round(percent / 100 * width)
    return "[" + "█" * filled + "░" * (width - filled) + f"] {percent}%"


def show_errors(title: str, response: ApiResponse) -> None:
    table = Table(box=box.SIMPLE_HEAD, show_header=True, header_style="bold white on red")
    table.add_column("Field",   style="bold yellow", no_wrap=True)
    table.add_column("Message", style="white")
    body = response.body if isinstance(response.body, dict) else {"error": str(response.body)}
    for key, message in body.items():
        table.add_row(key, message)
    console.print(Panel(table, title=f"[bold]{title} → {response.status_code}[/bold]",
                        border_style="red"))


def show_milestone(view: dict) -> None:
    summary = Table(box=box.ROUNDED, show_header=False, padding=(0, 1))
    summary.add_column("Key",   style="bold cyan", no_wrap=True)
    summary.add_column("Value", style="white")
    style = STATE_STYLE.get(view["state"], "white")
    summary.add_row("Milestone",   view["name"])
    summary.add_row("Type",        view["type"])
    summary.add_row("Due",         f"{view['dueDate']}  ({view['daysUntilDue']} days)")
    summary.add_row("State",       f"[{style}]{view['state'].upper()}[/{style}]")
    summary.add_row("Completion",  _bar(view["completionPercentage"]))
    avg = view["averageSatisfactionScore"]
    summary.add_row("Satisfaction", f"{avg:.1f} / 10" if avg is not None else "[dim]n/a[/dim]")
    summary.add_row("Version",     str(view["version"]))
    console.print(Panel(summary, title="[bold]Milestone[/bold]", border_style="magenta"))

    signers = Table(box=box.SIMPLE_HEAD, header_style="bold white on dark_violet")
    signers.add_column("Persona",  style="white")
    signers.add_column("Status",   justify="center")
    signers.add_column("Score",    justify="center")
    signers.add_column("Feedback", style="dim white")
    for s in view["personaSignOffs"]:
        signers.add_row(
            s["personaId"],
            f"{SIGNOFF_ICON.get(s['status'], '?')} {s['status']}",
            str(s["satisfactionScore"] or "–"),
            s["feedback"] or "",
        )
    console.print(Panel(signers, title="[bold]Persona Sign-offs[/bold]", border_style="blue"))


# ─── Scenario ────────────────────────────────────────────────────────────────

def run_demo(api: MilestoneApi) -> None:
    due = date.today() + timedelta(days=5)

    console.rule("[bold]1 · Invalid draft[/bold]")
    bad = api.create_milestone({
        "projectId": "proj-demo",
        "name": "   ",
        "description": "Wireframes for the onboarding flow",
        "dueDate": (date.today() - timedelta(days=1)).isoformat(),
        "type": "deliverable",
        "requirements": [{"title": "", "description": "Figma link"}],
        "evaluation": {"rubric": [
            {"criterion": "Clarity",   "weight": 50, "maxScore": 10, "description": "Easy to follow"},
            {"criterion": "Coverage",  "weight": 40, "maxScore": 10, "description": "All screens"},
        ]},
    })
    show_errors("Create milestone", bad)

    console.rule("[bold]2 · Valid milestone[/bold]")
    created = api.create_milestone({
        "projectId": "proj-demo",
        "name": "Onboarding wireframes",
        "description": "Low-fidelity wireframes for the onboarding flow",
        "dueDate": due.isoformat(),
        "type": "deliverable",
        "requirements": [{"title": "Figma file", "description": "Shared link", "type": "link"}],
        "evaluation": {"rubric": [
            {"criterion": "Clarity",  "weight": 60, "maxScore": 10, "description": "Easy to follow"},
            {"criterion": "Coverage", "weight": 40, "maxScore": 5,  "description": "All screens"},
        ]},
        "personaSignOffs": ["ux-lead", "product-owner", "eng-lead"],
    })
    milestone_id = created.body["id"]
    show_milestone(created.body)

    console.rule("[bold]3 · Sign-offs[/bold]")
    api.update_sign_off(milestone_id, {"personaId": "ux-lead", "status": "approved",
                                       "satisfactionScore": 9})
    api.update_sign_off(milestone_id, {"personaId": "product-owner", "status": "requested-changes",
                                       "feedback": "Add the error states", "satisfactionScore": 6})
    view = api.update_sign_off(milestone_id, {"personaId": "eng-lead", "status": "approved",
                                              "satisfactionScore": 8})
    show_milestone(view.body)

    console.rule("[bold]4 · Checkpoint[/bold]")
    cps = api.add_checkpoint(milestone_id, {
        "title": "First draft review",
        "description": "Walk through the happy path",
        "dueDate": (date.today() + timedelta(days=2)).isoformat(),
        "personaSignOffs": ["ux-lead"],
    })
    checkpoint_id = cps.body[0]["id"]
    cps = api.update_checkpoint_sign_off(milestone_id, checkpoint_id,
                                         {"personaId": "ux-lead", "status": "approved"})
    console.print(f"Checkpoint [bold]{cps.body[0]['title']}[/bold] → "
                  f"[green]{cps.body[0]['status']}[/green]")

    console.rule("[bold]5 · Resubmissions[/bold]")
    while True:
        resp = api.request_resubmission(milestone_id)
        if not resp.ok:
            show_errors("Request resubmission", resp)
            break
        console.print(f"Resubmission #{resp.body['resubmissionCount']} accepted "
                      f"([dim]{resp.body['remaining']} remaining[/dim])")

    console.rule("[bold]6 · Final approval and close[/bold]")
    view = api.update_sign_off(milestone_id, {"personaId": "product-owner", "status": "approved",
                                              "satisfactionScore": 8})
    show_milestone(view.body)
    if view.body["isReadyToClose"]:
        show_milestone(api.close_milestone(milestone_id).body)
    show_errors("Sign-off after close",
                api.update_sign_off(milestone_id, {"personaId": "ux-lead", "status": "pending"}))


# ─── Main ────────────────────────────────────────────────────────────────────

def main() -> None:
    settings = get_settings()
    logging.basicConfig(level=settings.app.log_level,
                        format="%(asctime)s %(levelname)-7s %(name)s: %(message)s")

    console.print()
    console.print(Panel(
        "[bold]Milestone Lifecycle & Evaluation Engine[/bold]\n"
        "[dim]Validation  •  Rubric  •  Persona sign-off  •  Checkpoints[/dim]",
        style="on dark_violet",
        expand=False,
    ))

    try:
        with tempfile.TemporaryDirectory() as tmp:
            run_demo(MilestoneApi(db_path=Path(tmp) / "demo.db", settings=settings))
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted.[/yellow]")
        sys.exit(0)
    except Exception:
        console.print_exception()
        sys.exit(1)


if __name__ == "__main__":
    main()
