"""Interactive operator approval through the Rich console."""

import asyncio
from datetime import UTC, datetime
from typing import Optional

from rich.console import Console
from rich.panel import Panel
from rich.prompt import Confirm, Prompt
from rich.table import Table

from schema_pipeline.collaborators.base import ApprovalWorkflow
from schema_pipeline.models.approval import ApprovalRequest, ApprovalResponse


class ConsoleApprovalWorkflow(ApprovalWorkflow):
    """Asks the operator at the terminal to approve a request.
    
    Requests carrying a confirmation token are approved only when the
    operator types the token back.
    """
    
    def __init__(self, approver: str, console: Optional[Console] = None):
        self.approver = approver
        self.console = console or Console()
    
    def _render(self, request: ApprovalRequest):
        table = Table(show_header=False, box=None)
        table.add_column("Field", style="cyan")
        table.add_column("Value")
        table.add_row("Subject", request.subject.value)
        table.add_row("Environment", request.environment.value)
        table.add_row("Requested by", request.requested_by)
        table.add_row("Risk level", request.risk_level)
        table.add_row("Expected duration", str(request.expected_duration))
        for domain, count in request.pending_migrations.items():
            table.add_row(f"Pending ({domain})", str(count))
        if request.rollback_plan:
            table.add_row(
                "Rollback plan",
                f"{', '.join(request.rollback_plan.domains) or '-'} "
                f"(~{request.rollback_plan.estimated_duration})"
            )
        
        self.console.print(Panel(table, title=f"Approval required: {request.summary}", border_style="yellow"))
    
    def _ask(self, request: ApprovalRequest) -> ApprovalResponse:
        self._render(request)
        
        if request.confirmation_token:
            typed = Prompt.ask(f"Type [bold]{request.confirmation_token}[/bold] to confirm", console=self.console)
            approved = typed.strip() == request.confirmation_token
            reason = None if approved else "Confirmation token did not match"
            return ApprovalResponse(
                approved=approved,
                approver=self.approver,
                decided_at=datetime.now(UTC),
                rejection_reason=reason,
                confirmation_token=typed.strip() if approved else None,
            )
        
        if Confirm.ask("Approve this request?", console=self.console, default=False):
            return ApprovalResponse(approved=True, approver=self.approver, decided_at=datetime.now(UTC))
        
        reason = Prompt.ask("Rejection reason", console=self.console, default="Rejected by operator")
        return ApprovalResponse(
            approved=False,
            approver=self.approver,
            decided_at=datetime.now(UTC),
            rejection_reason=reason,
        )
    
    async def request_approval(self, request: ApprovalRequest) -> ApprovalResponse:
        return await asyncio.to_thread(self._ask, request)
