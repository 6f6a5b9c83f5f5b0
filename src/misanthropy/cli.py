"""``misan``: a small command-line front end for the Messages API."""

import argparse
import asyncio
import logging
import sys

from misanthropy.client import ANTHROPIC_API_KEY_ENV, Anthropic
from misanthropy.errors import ConfigurationError, MisanthropyError
from misanthropy.events import ContentBlockDeltaEvent, TextDelta, ThinkingDelta
from misanthropy.merge import merge_response, merge_streamed_response
from misanthropy.request import MessagesRequest, Thinking
from misanthropy.usage import Usage, zero

logger = logging.getLogger(__name__)


def setup_logging(verbose: int, quiet: bool) -> None:
    if quiet:
        level = logging.ERROR
    else:
        level = {0: logging.WARNING, 1: logging.INFO}.get(verbose, logging.DEBUG)
    logging.basicConfig(
        level=level,
        format="%(asctime)s:%(name)s:%(levelname)s:%(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="misan", description=__doc__)
    parser.add_argument("--api-key", default=None)
    parser.add_argument(
        "-v", "--verbose", action="count", default=0,
        help="Verbose mode (-v, -vv)",
    )
    parser.add_argument(
        "-q", "--quiet", action="store_true", help="Silence all output",
    )
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("info", help="Print client configuration")

    message = sub.add_parser("message", help="Send a message to the API")
    message.add_argument(
        "prompt", nargs="?", default=None,
        help="Prompt to send; omit for an interactive conversation",
    )
    message.add_argument("--model", default="")
    message.add_argument("--max-tokens", type=int, default=0)
    message.add_argument("--system", default=None)
    message.add_argument("--temperature", type=float, default=None)
    message.add_argument(
        "--thinking", type=int, default=None, metavar="BUDGET",
        help="Enable extended thinking with this token budget",
    )
    message.add_argument(
        "--no-stream", action="store_true",
        help="Wait for the full response instead of streaming",
    )
    return parser


def build_request(args: argparse.Namespace) -> MessagesRequest:
    return MessagesRequest(
        model=args.model,
        max_tokens=args.max_tokens,
        system=args.system,
        temperature=args.temperature,
        thinking=(
            Thinking(budget_tokens=args.thinking)
            if args.thinking is not None else None
        ),
    )


async def send(
    client: Anthropic,
    request: MessagesRequest,
    stream: bool,
    total: Usage,
    out=None,
) -> Usage:
    """Send the request, print the reply and merge it into the history.

    An interrupted or cancelled stream keeps its partial reply in the
    history, and the call returns normally so a conversation can go on.
    """
    out = out or sys.stdout
    if not stream:
        response = await client.messages(request)
        print(response.format_content(), file=out)
        return merge_response(request, response, total)

    message_stream = client.messages_stream(request)
    try:
        async for event in message_stream:
            if not isinstance(event, ContentBlockDeltaEvent):
                continue
            if isinstance(event.delta, TextDelta):
                print(event.delta.text, end="", flush=True, file=out)
            elif isinstance(event.delta, ThinkingDelta):
                print(event.delta.thinking, end="", flush=True, file=out)
    except KeyboardInterrupt:
        logger.info("Stream interrupted, keeping partial reply")
    except asyncio.CancelledError:
        # Ctrl-C under asyncio.run arrives as a cancellation of the main task
        asyncio.current_task().uncancel()
        logger.info("Stream cancelled, keeping partial reply")
    finally:
        await message_stream.aclose()
        print(file=out)
    return merge_streamed_response(request, message_stream.response, total)


async def run_message(client: Anthropic, args: argparse.Namespace) -> Usage:
    request = build_request(args)
    stream = not args.no_stream
    total = zero()
    if args.prompt is not None:
        request.add_user(args.prompt)
        return await send(client, request, stream, total)

    while True:
        try:
            user_input = input("You: ")
        except (KeyboardInterrupt, EOFError):
            print("\nGoodbye!")
            return total
        request.add_user(user_input)
        total = await send(client, request, stream, total)


async def run(args: argparse.Namespace) -> int:
    try:
        client = Anthropic.with_string_or_env(args.api_key)
    except ConfigurationError:
        logger.error(
            f"No API key provided and {ANTHROPIC_API_KEY_ENV} "
            f"environment variable not set."
        )
        return 1
    logger.debug(f"Client initialized: {client!r}")

    async with client:
        if args.command == "info":
            logger.info("Running info command")
            print(f"Anthropic client: {client!r}")
            return 0
        logger.info("Running message command")
        try:
            total = await run_message(client, args)
        except MisanthropyError as e:
            logger.error(f"Failed to send message: {e}")
            return 1
        logger.info(
            f"Usage: {total.input_tokens} input, "
            f"{total.output_tokens} output tokens"
        )
    return 0


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(args.verbose, args.quiet)
    return asyncio.run(run(args))


if __name__ == "__main__":
    sys.exit(main())
