"""
Command line interface for the content-identification client.

Supports these commands:
- fingerprint: Fingerprint a media file and store the dump
- search: Run a pex, private, metadata or license search
- ingest / archive / list: Manage the private catalog
- stream: Run a stream search and print its events
- asset: Fetch asset metadata
- mockserver: Serve the mock service over HTTP
"""

import logging
import sys
from pathlib import Path
from typing import Any, List, Optional, Tuple

import click
from pydantic import BaseModel

from .config import ClientConfig
from .errors import ClientUsageError, PexError
from .fingerprint import Fingerprint, Fingerprinter
from .private_search import PrivateSearchClient, PrivateSearchRequest
from .schemas import FingerprintType, SearchKind
from .search import (
    LicenseSearchClient,
    LicenseSearchRequest,
    MetadataSearchClient,
    MetadataSearchRequest,
    PexSearchClient,
    PexSearchRequest,
)
from .stream import StreamSearchClient, StreamSearchRequest

logger = logging.getLogger(__name__)

TYPE_NAMES = ['video', 'audio', 'melody']

SEARCH_CLIENTS = {
    SearchKind.PEX: (PexSearchClient, PexSearchRequest),
    SearchKind.PRIVATE: (PrivateSearchClient, PrivateSearchRequest),
    SearchKind.METADATA: (MetadataSearchClient, MetadataSearchRequest),
    SearchKind.LICENSE: (LicenseSearchClient, LicenseSearchRequest),
}


class CommandOutput(BaseModel):
    """JSON document printed by every command."""
    success: bool
    command: str
    message: str = ""
    code: Optional[str] = None
    result: Optional[Any] = None


def _types(names: Tuple[str, ...]) -> FingerprintType:
    return FingerprintType.from_names(names) if names else FingerprintType.ALL


def _failure(command: str, error: Exception) -> CommandOutput:
    code = error.code.name if isinstance(error, PexError) else type(error).__name__
    message = error.message if isinstance(error, PexError) else str(error)
    return CommandOutput(success=False, command=command, message=message, code=code)


def _emit(output: CommandOutput):
    print(output.model_dump_json(indent=2))
    sys.exit(0 if output.success else 1)


def _load_query(client, path: str, is_dump: bool, types: FingerprintType) -> Fingerprint:
    if is_dump:
        return client.load_fingerprint(Path(path).read_bytes())
    return client.fingerprint_file(path, types)


# ============================================================================
# Handlers
# ============================================================================

def handle_fingerprint(path: str, output: str, types: FingerprintType) -> CommandOutput:
    """Fingerprint a file and write the dump; no session is needed."""
    try:
        with Fingerprinter().fingerprint_file(path, types) as ft:
            Path(output).write_bytes(ft.dump())
            return CommandOutput(
                success=True,
                command="fingerprint",
                message=f"Fingerprint written to {output}",
                result={"digest": ft.digest, "types": ft.types.names(), "output": output},
            )
    except (PexError, ClientUsageError, OSError) as e:
        logger.error(f"Fingerprinting {path} failed: {e}")
        return _failure("fingerprint", e)


def handle_search(config: ClientConfig, kind: SearchKind, path: str,
                  is_dump: bool, types: FingerprintType) -> CommandOutput:
    client_cls, request_cls = SEARCH_CLIENTS[kind]
    try:
        with client_cls(config=config) as client:
            with _load_query(client, path, is_dump, types) as ft:
                future = client.start_search(request_cls(fingerprint=ft))
                result = future.get()
        return CommandOutput(
            success=True,
            command="search",
            message=f"{len(result.matches)} matches",
            result=result.model_dump(mode="json"),
        )
    except (PexError, ClientUsageError, OSError) as e:
        logger.error(f"{kind.value} search failed: {e}")
        return _failure("search", e)


def handle_ingest(config: ClientConfig, provided_id: str, path: str,
                  is_dump: bool, types: FingerprintType) -> CommandOutput:
    try:
        with PrivateSearchClient(config=config) as client:
            with _load_query(client, path, is_dump, types) as ft:
                client.ingest(provided_id, ft)
        return CommandOutput(success=True, command="ingest", message=f"Ingested {provided_id}")
    except (PexError, ClientUsageError, OSError) as e:
        logger.error(f"Ingesting {provided_id} failed: {e}")
        return _failure("ingest", e)


def handle_archive(config: ClientConfig, provided_id: str, types: FingerprintType) -> CommandOutput:
    try:
        with PrivateSearchClient(config=config) as client:
            client.archive(provided_id, types)
        return CommandOutput(
            success=True,
            command="archive",
            message=f"Archived {','.join(types.names())} of {provided_id}",
        )
    except (PexError, ClientUsageError) as e:
        return _failure("archive", e)


def handle_list(config: ClientConfig, limit: int, after: Optional[str],
                drain: bool) -> CommandOutput:
    try:
        with PrivateSearchClient(config=config) as client:
            if drain:
                entries = [e.model_dump(mode="json") for e in client.iter_entries(limit=limit)]
                result = {"entries": entries, "end_cursor": None, "has_next_page": False}
            else:
                result = client.list_entries(limit=limit, after=after).model_dump(mode="json")
        return CommandOutput(
            success=True,
            command="list",
            message=f"{len(result['entries'])} entries",
            result=result,
        )
    except (PexError, ClientUsageError) as e:
        return _failure("list", e)


def handle_stream(config: ClientConfig, url: str, max_events: Optional[int]) -> CommandOutput:
    events: List[Any] = []
    try:
        with StreamSearchClient(config=config) as client:
            with client.start_search(StreamSearchRequest(url=url)) as search:
                for event in search:
                    events.append(event.model_dump(mode="json", exclude_none=True))
                    if max_events is not None and len(events) >= max_events:
                        break
        return CommandOutput(
            success=True,
            command="stream",
            message=f"{len(events)} events",
            result={"events": events},
        )
    except (PexError, ClientUsageError) as e:
        output = _failure("stream", e)
        output.result = {"events": events}
        return output


def handle_asset(config: ClientConfig, asset_id: str) -> CommandOutput:
    try:
        with PexSearchClient(config=config) as client:
            asset = client.asset_library().get_asset(asset_id)
        return CommandOutput(success=True, command="asset", result=asset.model_dump(mode="json"))
    except (PexError, ClientUsageError) as e:
        return _failure("asset", e)


# ============================================================================
# Commands
# ============================================================================

types_option = click.option(
    '--type', '-t', 'type_names', multiple=True,
    type=click.Choice(TYPE_NAMES),
    help='Fingerprint type (repeatable, default: all)'
)
dump_option = click.option(
    '--dump', 'is_dump', is_flag=True,
    help='Treat the input file as a fingerprint dump instead of media'
)


@click.group()
@click.option('--base-url', default=None, help='Service root URL (PEXSDK_BASE_URL)')
@click.option('--client-id', default=None, help='Client ID (PEXSDK_CLIENT_ID)')
@click.option('--client-secret', default=None, help='Client secret (PEXSDK_CLIENT_SECRET)')
@click.option('--mock', is_flag=True, help='Use an in-process mock backend')
@click.option('--verbose', '-v', is_flag=True, help='Enable debug logging')
@click.pass_context
def cli(ctx, base_url, client_id, client_secret, mock, verbose):
    """Content-identification client."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    ctx.ensure_object(dict)
    ctx.obj['overrides'] = {
        'base_url': base_url,
        'client_id': client_id,
        'client_secret': client_secret,
        'use_mock': True if mock else None,
    }


def _config(ctx) -> ClientConfig:
    return ClientConfig.from_env(**ctx.obj['overrides'])


@cli.command()
@click.argument('path', type=click.Path(exists=True, dir_okay=False))
@click.option('--output', '-o', required=True, help='Where to write the fingerprint dump')
@types_option
def fingerprint(path: str, output: str, type_names: Tuple[str, ...]):
    """Fingerprint a media file."""
    _emit(handle_fingerprint(path, output, _types(type_names)))


@cli.command()
@click.argument('path', type=click.Path(exists=True, dir_okay=False))
@click.option('--kind', '-k', default='pex',
              type=click.Choice([k.value for k in SearchKind]),
              help='Search variant')
@dump_option
@types_option
@click.pass_context
def search(ctx, path: str, kind: str, is_dump: bool, type_names: Tuple[str, ...]):
    """Search a media file (or a fingerprint dump)."""
    _emit(handle_search(_config(ctx), SearchKind(kind), path, is_dump, _types(type_names)))


@cli.command()
@click.argument('provided_id')
@click.argument('path', type=click.Path(exists=True, dir_okay=False))
@dump_option
@types_option
@click.pass_context
def ingest(ctx, provided_id: str, path: str, is_dump: bool, type_names: Tuple[str, ...]):
    """Ingest a media file into the private catalog."""
    _emit(handle_ingest(_config(ctx), provided_id, path, is_dump, _types(type_names)))


@cli.command()
@click.argument('provided_id')
@types_option
@click.pass_context
def archive(ctx, provided_id: str, type_names: Tuple[str, ...]):
    """Archive fingerprint types of a catalog entry."""
    _emit(handle_archive(_config(ctx), provided_id, _types(type_names)))


@cli.command(name='list')
@click.option('--limit', '-l', default=100, type=click.IntRange(1, 1000), help='Page size')
@click.option('--after', default=None, help='Cursor returned by a previous page')
@click.option('--all', 'drain', is_flag=True, help='Fetch every page')
@click.pass_context
def list_entries(ctx, limit: int, after: Optional[str], drain: bool):
    """List private catalog entries."""
    _emit(handle_list(_config(ctx), limit, after, drain))


@cli.command()
@click.argument('url')
@click.option('--max-events', default=None, type=click.IntRange(1), help='Stop after N events')
@click.pass_context
def stream(ctx, url: str, max_events: Optional[int]):
    """Run a stream search on a media URL."""
    _emit(handle_stream(_config(ctx), url, max_events))


@cli.command()
@click.argument('asset_id')
@click.pass_context
def asset(ctx, asset_id: str):
    """Fetch the metadata of an asset."""
    _emit(handle_asset(_config(ctx), asset_id))


@cli.command()
@click.option('--host', default='127.0.0.1', help='Bind address')
@click.option('--port', '-p', default=8080, type=int, help='Port')
def mockserver(host: str, port: int):
    """Serve the mock service over HTTP."""
    from .mockserver import run
    run(host=host, port=port)


if __name__ == '__main__':
    cli()
