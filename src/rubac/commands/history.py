"""History of a client's generations."""

from rubac.commands.context import CommandContext
from rubac.exceptions import NotFoundError


def show_history(ctx: CommandContext, client: str, index: int | None = None) -> list[str]:
    """Report a client's generations, or one generation's manifest.

    Args:
        ctx: Command collaborators
        client: Client to report on
        index: Slot whose manifest is printed instead of the listing

    Returns:
        The reported generation names

    Raises:
        NotFoundError: If the manifest of the indexed generation is missing

    """
    entries = ctx.table.history(client, ctx.client_dir(client), index)
    if not entries:
        ctx.logger.info(f"No history for {client}")
        return entries

    ctx.logger.info(f"##### history for {client} #####")
    if index is None:
        for i, name in enumerate(entries):
            ctx.logger.info(f"{client}:{i}: {name}")
        return entries

    name = entries[0]
    ctx.logger.info(f"{client}:{index}: {name}")
    generation_dir = ctx.generation_dir(client, name)
    if not ctx.manifest_store.exists(generation_dir):
        error_msg = f"Manifest {ctx.manifest_store.manifest_path(generation_dir)} not found"
        raise NotFoundError(error_msg)
    for path in sorted(ctx.manifest_store.load(generation_dir)):
        ctx.logger.info(path)
    return entries
