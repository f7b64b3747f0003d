"""Removal of a single generation."""

import shutil
from pathlib import Path

from rubac.commands.context import CommandContext
from rubac.exceptions import NotFoundError, PreconditionError
from rubac.run_controller import SignalGuard


def prune_generation(ctx: CommandContext, client: str, selected: str | None) -> Path:
    """Delete a selected generation and close the gap it leaves in the table.

    Args:
        ctx: Command collaborators
        client: Client owning the generation
        selected: Generation name resolved from the operator's selector

    Returns:
        The generation directory that was pruned

    Raises:
        PreconditionError: If no generation was selected
        NotFoundError: If the generation is not in the client's history

    """
    if not selected:
        error_msg = "Specify which backup to delete with --select"
        raise PreconditionError(error_msg)

    client_dir = ctx.client_dir(client)
    history = ctx.table.history(client, client_dir)
    if not history:
        error_msg = f"No history found for {client}"
        raise NotFoundError(error_msg)
    if selected not in history:
        error_msg = f"Selected backup {selected} of {client} not found"
        raise NotFoundError(error_msg)

    index = history.index(selected)
    ctx.logger.info(f"Pruning {client}:{selected} for history index {index}")

    saved_table = ctx.config_store.incrementals(client)
    target = client_dir / selected
    with SignalGuard(ctx.logger):
        ctx.table.prune(client, selected)

        if not target.exists():
            ctx.logger.warning(f"Prune backup {target} not found")
        elif ctx.dry_run:
            ctx.logger.info(f"Would remove {index}:{selected}:{target}")
        else:
            ctx.logger.info(f"Remove {index}:{selected}:{target}")
            shutil.rmtree(target)

        if ctx.dry_run:
            ctx.config_store.replace_incrementals(client, saved_table)
        else:
            ctx.config_store.save(ctx.profile)
    return target
