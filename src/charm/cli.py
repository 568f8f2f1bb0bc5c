"""charm CLI - drive remote document processing jobs."""

import functools
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable

import click
import requests

from charm.config import DEFAULT_CONFIG_PATH, ClientConfig, convert_server_config, load_config, save_config
from charm.core.document import load_document, save_document, write_text_atomic
from charm.core.markdown import document_to_markdown, payload_to_markdown
from charm.errors import CharmError, DocumentIOError
from charm.jobs.batch import DEGRADED, FAILED, BatchItem, read_batch_list, transcribe_batch
from charm.jobs.client import FailurePolicy
from charm.jobs.workflows import (
    CHUNKING,
    SUMMARIZATION,
    SUMMARY_METHODS,
    TRANSCRIPTION,
    JobKind,
    JobSettings,
    OutputFormat,
    OutputMode,
    SummaryOptions,
    TranscriptionOptions,
    chunk_document,
    default_chunk_output,
    default_summary_output,
    default_transcription_output,
    resolve_output_path,
    summarize_document,
    transcribe_file,
    write_transcription,
)
from charm.logging.run_logger import RunLogger
from charm.merge.engine import MergeEngine
from charm.prompts import (
    build_generation_payload,
    expand_template,
    load_json_file,
    make_image_attachment,
    response_format_options,
    user_content_with_attachments,
)
from charm.transport import EXTEND_TRANSCRIPT_PATH, CharmTransport, message_text

DEGRADED_WARNINGS = {
    "job_error": "Job failed",
    "http_error": "Could not retrieve final result",
    "timeout": "Still processing",
    "exception": "Failed to fetch final doc object",
}

positive_float = click.FloatRange(min=0, min_open=True)


@dataclass
class CliState:
    """Per-invocation state; tests inject ``session`` and ``sleep``."""

    config: ClientConfig | None = None
    session: requests.Session | None = None
    sleep: Callable[[float], None] | None = None

    def transport(self) -> CharmTransport:
        return CharmTransport(self.config, self.session)

    def job_settings(self, kind: JobKind, poll_interval: float | None, max_polls: int | None = None) -> JobSettings:
        return JobSettings(
            poll_interval=poll_interval or self.config.poll_interval,
            max_polls=max_polls,
            on_progress=lambda status: click.echo(kind.describe_progress(status)),
            sleep=self.sleep,
        )


def handle_errors(func: Callable[..., Any]) -> Callable[..., Any]:
    """Report ``CharmError`` as one categorized ``[ERROR]`` line and exit 1."""

    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return func(*args, **kwargs)
        except CharmError as e:
            click.echo(f"[ERROR] ({e.category}) {e}", err=True)
            click.get_current_context().exit(1)

    return wrapper


def _read_text(path: str, what: str) -> str:
    try:
        return Path(path).read_text(encoding="utf-8")
    except OSError as e:
        raise DocumentIOError(f"Could not read {what}: {path} ({e})") from e


def _read_json(path: str, what: str) -> Any:
    try:
        return load_json_file(path)
    except (OSError, ValueError) as e:
        raise DocumentIOError(f"Could not read/parse {what}: {path} ({e})") from e


def _one_of(first: str | None, second: str | None, names: str) -> None:
    if first is not None and second is not None:
        raise click.UsageError(f"Cannot combine {names}.")


@click.group()
@click.version_option()
@click.option("--hostname", help="Service hostname")
@click.option("--port", type=int, help="Service port")
@click.option("--base-url-prefix", help="URL path prefix of the service")
@click.option("--model", help="Model used for jobs and text generation")
@click.option("--config", "config_path", type=click.Path(dir_okay=False), help="Config file path")
@click.option("--verbose", "-v", is_flag=True, help="Debug logging")
@click.pass_context
def main(
    ctx: click.Context,
    hostname: str | None,
    port: int | None,
    base_url_prefix: str | None,
    model: str | None,
    config_path: str | None,
    verbose: bool,
) -> None:
    """charm: client for remote transcription, chunking, summarization and merging."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    state = ctx.ensure_object(CliState)
    try:
        state.config = load_config(
            config_path,
            hostname=hostname,
            port=port,
            base_url_prefix=base_url_prefix,
            model=model,
        )
    except CharmError as e:
        click.echo(f"[ERROR] ({e.category}) {e}", err=True)
        ctx.exit(1)


@main.command()
@click.argument("input_path", type=click.Path(dir_okay=False))
@click.option("--output", "-o", help="Output path (single file only)")
@click.option("--output-dir", type=click.Path(file_okay=False), help="Directory for batch outputs")
@click.option("--description", help="Description of the document")
@click.option("--intent", help="What the transcription will be used for")
@click.option("--graphic-instructions", help="How to describe graphics")
@click.option("--detect-document-boundaries", is_flag=True)
@click.option("--no-page-numbering", is_flag=True)
@click.option("--ocr-threshold", type=float, default=1.0, show_default=True)
@click.option("--poll-interval", type=positive_float, help="Seconds between status checks")
@click.option("--max-polls", type=click.IntRange(min=1), help="Give up after this many status checks")
@click.option("--continue-on-failure", is_flag=True, help="Write a placeholder document on failure")
@click.option(
    "--output-format",
    type=click.Choice([f.value for f in OutputFormat]),
    default=OutputFormat.DOC_JSON.value,
    show_default=True,
)
@click.option("--input-document-type", help="Document type hint, e.g. medical")
@click.option("--batch", is_flag=True, help="INPUT_PATH lists one file per line")
@click.option("--run-log", type=click.Path(dir_okay=False), help="Append batch events to this JSONL file")
@click.pass_obj
@handle_errors
def transcribe(
    state: CliState,
    input_path: str,
    output: str | None,
    output_dir: str | None,
    description: str | None,
    intent: str | None,
    graphic_instructions: str | None,
    detect_document_boundaries: bool,
    no_page_numbering: bool,
    ocr_threshold: float,
    poll_interval: float | None,
    max_polls: int | None,
    continue_on_failure: bool,
    output_format: str,
    input_document_type: str | None,
    batch: bool,
    run_log: str | None,
) -> None:
    """Transcribe a PDF/DOCX file (or a batch list of them) into a doc.json."""
    options = TranscriptionOptions(
        description=description,
        intent=intent,
        graphic_instructions=graphic_instructions,
        detect_document_boundaries=detect_document_boundaries,
        page_numbering=not no_page_numbering,
        ocr_threshold=ocr_threshold,
        continue_on_failure=continue_on_failure,
        input_document_type=input_document_type,
    )
    policy = FailurePolicy.CONTINUE if continue_on_failure else FailurePolicy.STRICT
    fmt = OutputFormat(output_format)
    settings = state.job_settings(TRANSCRIPTION, poll_interval, max_polls)
    transport = state.transport()

    if batch:
        if output:
            raise click.UsageError("--output cannot be used with a batch; use --output-dir.")
        inputs = read_batch_list(input_path)
        if output_dir:
            Path(output_dir).mkdir(parents=True, exist_ok=True)
        click.echo(f"Batch of {len(inputs)} file(s) from {input_path}")

        def report_item(item: BatchItem) -> None:
            if item.status == FAILED:
                click.echo(f"[WARN] {item.input_path}: failed ({item.category}) {item.error}", err=True)
            elif item.status == DEGRADED:
                click.echo(f"[WARN] {item.input_path}: degraded ({item.category}) => {item.output_path}", err=True)
            else:
                click.echo(f"Saved final doc object to {item.output_path}")

        report = transcribe_batch(
            transport,
            inputs,
            options=options,
            settings=settings,
            policy=policy,
            output_format=fmt,
            output_dir=output_dir,
            run_logger=RunLogger(run_log) if run_log else None,
            on_item=report_item,
        )
        click.echo(
            f"Batch complete: {report.succeeded} succeeded, "
            f"{report.degraded} degraded, {report.failed} failed"
        )
        click.get_current_context().exit(report.exit_code)
        return

    outcome = transcribe_file(transport, input_path, options, settings, policy)
    if outcome.degraded and outcome.error is not None:
        reason = DEGRADED_WARNINGS.get(outcome.error.category, "Transcription failed")
        click.echo(
            f"[WARN] {reason}, but --continue-on-failure specified. Creating partial result...",
            err=True,
        )
    else:
        click.echo("Conversion complete!")
    target = Path(output) if output else default_transcription_output(input_path, fmt)
    write_transcription(outcome.document, target, fmt)
    click.echo(f"Saved final doc object to {target}")


@main.command()
@click.option("--input", "input_path", required=True, type=click.Path(dir_okay=False), help="doc.json to chunk")
@click.option("--strategy", required=True, help='Chunking strategy, e.g. "merge_and_split"')
@click.option("--chunk-size", required=True, type=click.IntRange(min=1), help="Chunk size in tokens")
@click.option("--input-chunk-group-name", default="all", show_default=True)
@click.option("--output-chunk-group-name", default="rechunked", show_default=True)
@click.option("--inline", is_flag=True, help="Add the new chunk group to the input document")
@click.option("--output", help="Output path")
@click.option("--poll-interval", type=positive_float)
@click.pass_obj
@handle_errors
def chunk(
    state: CliState,
    input_path: str,
    strategy: str,
    chunk_size: int,
    input_chunk_group_name: str,
    output_chunk_group_name: str,
    inline: bool,
    output: str | None,
    poll_interval: float | None,
) -> None:
    """Re-chunk a document into a new chunk group."""
    mode = OutputMode.IN_PLACE if inline else OutputMode.DERIVED_COPY
    target = resolve_output_path(input_path, mode, output, default_chunk_output)
    doc = load_document(input_path)

    result = chunk_document(
        state.transport(),
        doc,
        strategy=strategy,
        chunk_size=chunk_size,
        input_group=input_chunk_group_name,
        output_group=output_chunk_group_name,
        mode=mode,
        settings=state.job_settings(CHUNKING, poll_interval),
    )
    save_document(result, target)
    if mode is OutputMode.IN_PLACE:
        click.echo(f'Wrote updated doc (with new chunk group "{output_chunk_group_name}") to: {target}')
    else:
        click.echo(f'Wrote new JSON document with chunk group "{output_chunk_group_name}" to: {target}')


@main.command()
@click.option("--input", "input_path", required=True, type=click.Path(dir_okay=False), help="doc.json to summarize")
@click.option("--method", type=click.Choice(SUMMARY_METHODS), default="map", show_default=True)
@click.option("--chunk-group", default="pages", show_default=True)
@click.option("--context-chunks-before", type=click.IntRange(min=0), default=0)
@click.option("--context-chunks-after", type=click.IntRange(min=0), default=0)
@click.option("--guidance")
@click.option("--guidance-file", type=click.Path(dir_okay=False))
@click.option("--temperature", type=float)
@click.option("--annotation-field", default="summary", show_default=True)
@click.option("--annotation-field-delta", default="summary_delta", show_default=True)
@click.option("--merge-summaries-guidance")
@click.option("--merge-summaries-guidance-file", type=click.Path(dir_okay=False))
@click.option("--initial-summary")
@click.option("--initial-summary-file", type=click.Path(dir_okay=False))
@click.option("--json-schema", type=click.Path(dir_okay=False), help="JSON schema file")
@click.option("--json-schema-file", type=click.Path(dir_okay=False), help="JSON schema file")
@click.option("--inline", is_flag=True, help="Overwrite the input document")
@click.option("--output-file", help="Output path")
@click.option("--poll-interval", type=positive_float)
@click.pass_obj
@handle_errors
def summarize(
    state: CliState,
    input_path: str,
    method: str,
    chunk_group: str,
    context_chunks_before: int,
    context_chunks_after: int,
    guidance: str | None,
    guidance_file: str | None,
    temperature: float | None,
    annotation_field: str,
    annotation_field_delta: str,
    merge_summaries_guidance: str | None,
    merge_summaries_guidance_file: str | None,
    initial_summary: str | None,
    initial_summary_file: str | None,
    json_schema: str | None,
    json_schema_file: str | None,
    inline: bool,
    output_file: str | None,
    poll_interval: float | None,
) -> None:
    """Summarize a document's chunks (or the whole document)."""
    _one_of(guidance, guidance_file, "--guidance with --guidance-file")
    _one_of(
        merge_summaries_guidance,
        merge_summaries_guidance_file,
        "--merge-summaries-guidance with --merge-summaries-guidance-file",
    )
    _one_of(initial_summary, initial_summary_file, "--initial-summary with --initial-summary-file")
    _one_of(json_schema, json_schema_file, "--json-schema with --json-schema-file")

    if guidance_file:
        guidance = _read_text(guidance_file, "--guidance-file")
    if merge_summaries_guidance_file:
        merge_summaries_guidance = _read_text(merge_summaries_guidance_file, "--merge-summaries-guidance-file")
    if initial_summary_file:
        initial_summary = _read_text(initial_summary_file, "--initial-summary-file")
    schema_path = json_schema or json_schema_file
    schema = _read_json(schema_path, "JSON schema file") if schema_path else None

    options = SummaryOptions(
        method=method,
        chunk_group=chunk_group,
        context_chunks_before=context_chunks_before,
        context_chunks_after=context_chunks_after,
        guidance=guidance,
        temperature=temperature,
        annotation_field=annotation_field,
        annotation_field_delta=annotation_field_delta,
        merge_summaries_guidance=merge_summaries_guidance,
        initial_summary=initial_summary,
        json_schema=schema,
    )
    mode = OutputMode.IN_PLACE if inline else OutputMode.DERIVED_COPY
    target = resolve_output_path(input_path, mode, output_file, default_summary_output)
    doc = load_document(input_path)

    result = summarize_document(
        state.transport(),
        doc,
        options,
        settings=state.job_settings(SUMMARIZATION, poll_interval),
    )
    save_document(result, target)
    click.echo(f"Wrote summarized doc to: {target}")


@main.command("merge-transcriptions")
@click.argument("inputs", nargs=-1, required=True, type=click.Path(dir_okay=False))
@click.option("--output", "-o", default="merged.doc.json", show_default=True)
@click.option("--chunk-group", default="pages", show_default=True, help="Chunk group holding the pages")
@click.pass_obj
@handle_errors
def merge_transcriptions(state: CliState, inputs: tuple[str, ...], output: str, chunk_group: str) -> None:
    """Merge several doc.json transcriptions of one document into one."""
    if len(inputs) < 2:
        raise click.UsageError("You must provide at least two .doc.json files to merge.")
    docs = [load_document(path) for path in inputs]

    engine = MergeEngine(
        state.transport(),
        model=state.config.model,
        chunk_group=chunk_group,
        on_page=lambda index, total: click.echo(f"Merged page {index + 1}/{total}"),
    )
    merged = engine.merge(docs)
    save_document(merged, output)
    click.echo(f"Merged transcription doc with {len(merged.chunk_group(chunk_group))} pages => {output}")


def _converted_output_path(input_path: Path, extension: str) -> Path:
    """``foo.doc.json`` -> ``foo.<ext>``; ``foo.docx`` -> ``foo.<ext>``."""
    extension = extension.lstrip(".")
    name = input_path.name
    if name.endswith(".doc.json"):
        stem = name[: -len(".doc.json")]
    else:
        stem = input_path.stem
    return input_path.with_name(f"{stem}.{extension}")


@main.command()
@click.argument("input_path", type=click.Path(exists=True, dir_okay=False))
@click.argument("output_path", required=False)
@click.option("--to", "-t", "to_ext", help="Target extension; derives the output name")
@click.option("--no-metadata", is_flag=True, help="Omit HTML-comment metadata from Markdown")
@click.option("--poll-interval", type=positive_float)
@click.pass_obj
@handle_errors
def convert(
    state: CliState,
    input_path: str,
    output_path: str | None,
    to_ext: str | None,
    no_metadata: bool,
    poll_interval: float | None,
) -> None:
    """Convert doc.json -> md locally, or docx/pdf -> md through a transcription job."""
    source = Path(input_path)
    if to_ext:
        target = _converted_output_path(source, to_ext)
    elif output_path:
        target = Path(output_path)
    else:
        raise click.UsageError("Give an OUTPUT_PATH or --to <extension>.")

    in_ext = ".doc.json" if source.name.endswith(".doc.json") else source.suffix.lower()
    if target.suffix.lower() != ".md" or in_ext not in (".doc.json", ".docx", ".pdf"):
        raise click.UsageError(
            f"Unsupported conversion: {in_ext} to {target.suffix}. "
            "Supported: .doc.json -> .md, .docx -> .md, .pdf -> .md"
        )

    if in_ext == ".doc.json":
        try:
            markdown = payload_to_markdown(_read_json(input_path, "input file"), include_metadata=not no_metadata)
        except ValueError as e:
            raise DocumentIOError(str(e)) from e
    else:
        outcome = transcribe_file(
            state.transport(),
            source,
            settings=state.job_settings(TRANSCRIPTION, poll_interval),
        )
        markdown = document_to_markdown(outcome.document, include_metadata=not no_metadata)

    write_text_atomic(target, markdown)
    click.echo(f"Converted {input_path} to {target}")


@main.command("extract-markdown")
@click.argument("input_path", type=click.Path(dir_okay=False))
@click.option("--output", "-o", help="Output path (default: input with .md extension)")
@click.pass_obj
@handle_errors
def extract_markdown(state: CliState, input_path: str, output: str | None) -> None:
    """Extract Markdown from a file with a single synchronous call."""
    source = Path(input_path)
    try:
        data = source.read_bytes()
    except OSError as e:
        raise DocumentIOError(f"Could not read file at {input_path}: {e}") from e
    markdown = state.transport().convert_file(source.name, data)
    target = Path(output) if output else source.with_suffix(".md")
    write_text_atomic(target, markdown)
    click.echo(f"Extracted markdown saved to: {target}")


def _echo_assistant(messages: list[dict[str, Any]]) -> None:
    for message in messages:
        click.echo(message_text(message))


@main.command()
@click.argument("message", nargs=-1)
@click.option("--system", "system_file", type=click.Path(dir_okay=False), help="System prompt file")
@click.option("--input-file", type=click.Path(dir_okay=False), help="Read the user message from a file")
@click.option("--force-response-format", help="e.g. json_object")
@click.option("--force-response-json-schema", type=click.Path(dir_okay=False), help="JSON schema file")
@click.option("--attach", "attachments", multiple=True, type=click.Path(exists=True, dir_okay=False))
@click.option("--system-template-file", type=click.Path(dir_okay=False))
@click.option("--system-param", nargs=2, multiple=True, metavar="NAME VALUE")
@click.option("--system-param-file", nargs=2, multiple=True, metavar="NAME FILE")
@click.option("--input-template-file", type=click.Path(dir_okay=False))
@click.option("--input-param", nargs=2, multiple=True, metavar="NAME VALUE")
@click.option("--input-param-file", nargs=2, multiple=True, metavar="NAME FILE")
@click.pass_obj
@handle_errors
def run(
    state: CliState,
    message: tuple[str, ...],
    system_file: str | None,
    input_file: str | None,
    force_response_format: str | None,
    force_response_json_schema: str | None,
    attachments: tuple[str, ...],
    system_template_file: str | None,
    system_param: tuple[tuple[str, str], ...],
    system_param_file: tuple[tuple[str, str], ...],
    input_template_file: str | None,
    input_param: tuple[tuple[str, str], ...],
    input_param_file: tuple[tuple[str, str], ...],
) -> None:
    """Send one message to the model and print the reply."""
    _one_of(system_template_file, system_file, "--system-template-file and --system")
    _one_of(force_response_format, force_response_json_schema, "--force-response-format and --force-response-json-schema")

    images = []
    for path in attachments:
        attachment = make_image_attachment(path)
        if attachment is None:
            raise click.UsageError(f"Could not attach file (not a png/jpeg/gif image): {path}")
        images.append(attachment)

    leftover = " ".join(message).strip()
    if input_template_file:
        if leftover or input_file:
            raise click.UsageError("Cannot combine --input-template-file with a message or --input-file.")
        params = dict(input_param)
        params.update({name: _read_text(path, f"input-param-file for {name}") for name, path in input_param_file})
        text = expand_template(_read_text(input_template_file, "input template file"), params)
    elif leftover:
        text = leftover
    elif input_file:
        text = _read_text(input_file, "--input-file")
    else:
        text = click.get_text_stream("stdin").read().strip()
    if not text and not images:
        raise click.UsageError("No user message and no attachments provided.")

    system = None
    if system_template_file:
        params = dict(system_param)
        params.update({name: _read_text(path, f"system-param-file for {name}") for name, path in system_param_file})
        system = expand_template(_read_text(system_template_file, "system template file"), params)
    elif system_file:
        system = _read_text(system_file, "--system file")

    schema = _read_json(force_response_json_schema, "JSON schema") if force_response_json_schema else None
    payload = build_generation_payload(
        state.config.model,
        user_content_with_attachments(text, images),
        system=system,
        options=response_format_options(force_response_format, schema),
    )
    messages = state.transport().extend_transcript(payload, path=EXTEND_TRANSCRIPT_PATH)
    if not messages:
        click.echo("(No assistant message returned.)")
        return
    _echo_assistant(messages)


@main.command()
@click.option("--system", "system_file", type=click.Path(dir_okay=False), help="System prompt file")
@click.pass_obj
@handle_errors
def chat(state: CliState, system_file: str | None) -> None:
    """Interactive chat. Type "exit" or "quit" to end."""
    system = _read_text(system_file, "--system file") if system_file else None
    transport = state.transport()
    history: list[dict[str, Any]] = []

    click.echo('Entering chat mode. Type "exit" or "quit" to end.\n')
    stdin = click.get_text_stream("stdin")
    while True:
        click.echo("> ", nl=False)
        line = stdin.readline()
        if not line:
            break
        user_input = line.strip()
        if not user_input:
            continue
        if user_input.lower() in ("exit", "quit"):
            break

        payload = build_generation_payload(
            state.config.model, user_input, system=system, options={"stream": False}, history=history
        )
        history.append({"role": "user", "content": user_input})
        try:
            messages = transport.extend_transcript(payload)
        except CharmError as e:
            click.echo(f"[ERROR] ({e.category}) {e}", err=True)
            continue
        history.extend(messages)
        _echo_assistant(messages)
    click.echo("Exiting chat.")


@main.command("list")
@click.pass_obj
@handle_errors
def list_models(state: CliState) -> None:
    """List the models available on the server."""
    models = state.transport().list_models()
    if not models:
        click.echo("No model list found in response.")
        return
    click.echo("Available models:\n")
    for m in models:
        click.echo(f"  ID:   {m.get('id')}")
        click.echo(f"  Name: {m.get('name') or '(no name)'}")
        if m.get("description"):
            click.echo(f"  Desc: {m['description']}")
        click.echo("")


@main.command("convert-server-config")
@click.argument("server_config", type=click.Path(exists=True, dir_okay=False))
@click.option("--output", "-o", type=click.Path(dir_okay=False), default=str(DEFAULT_CONFIG_PATH), show_default=True)
@click.option("--yes", "-y", is_flag=True, help="Overwrite without asking")
@handle_errors
def convert_server_config_command(server_config: str, output: str, yes: bool) -> None:
    """Write a local client config derived from a server config.json."""
    server_conf = _read_json(server_config, "server config")
    if not isinstance(server_conf, dict):
        raise DocumentIOError(f"Server config {server_config} must be a JSON object")
    local = convert_server_config(server_conf)

    target = Path(output)
    if target.exists() and not yes:
        click.echo(f"[INFO] A local config file already exists at: {target}")
        if not click.confirm("Overwrite?", default=False):
            click.echo("Aborted.")
            return
    try:
        save_config(local, target)
    except OSError as e:
        raise DocumentIOError(f"Could not write local charm config: {e}") from e
    click.echo(f"Wrote local charm config to: {target}")
    click.echo(json.dumps(local, indent=2))


if __name__ == "__main__":
    main()
