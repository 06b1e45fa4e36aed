"""
run_ask.py: ask a model through the gateway from the command line.

Reads provider keys and the default candidate list from the environment
(or .env), then sends one prompt:

  1. Buffered: prints the response text and its completion status
  2. Streaming (--stream): prints content as it arrives

Usage:
    python run_ask.py "Explain SSE in one sentence"
    python run_ask.py "Hello" --models deepseek:deepseek-chat openai:gpt-4o-mini
    python run_ask.py "Hello" --stream --context "Answer in French"
    python run_ask.py "Hello" --json
"""

import argparse
import asyncio
import json
import logging
import sys

import httpx

from ai_provider.core.config import settings, validate_settings
from ai_provider.core.exceptions import AiProviderError
from ai_provider.core.logging import setup_logging
from ai_provider.gateway.events import iter_messages
from ai_provider.gateway.gateway import AiGateway
from ai_provider.gateway.types import AiRequest, ProviderRequestOptions, StreamEventType

logger = logging.getLogger("run_ask")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Ask a model through the AI provider gateway")
    parser.add_argument("prompt", help="Prompt text")
    parser.add_argument("--models", nargs="+", help="provider:model candidates, tried in order")
    parser.add_argument("--stream", action="store_true", help="Stream the response")
    parser.add_argument("--json", action="store_true", help="Print the buffered response as JSON")
    parser.add_argument("--context", help="System prompt")
    parser.add_argument("--max-tokens", type=int, default=None)
    parser.add_argument("--temperature", type=float, default=None)
    return parser.parse_args(argv)


async def ask(args: argparse.Namespace) -> int:
    request = AiRequest(
        prompt=args.prompt,
        models=args.models,
        options=ProviderRequestOptions(
            context=args.context,
            max_tokens=args.max_tokens,
            temperature=args.temperature,
            stream=args.stream,
        ),
    )

    async with AiGateway.from_settings(settings) as gateway:
        try:
            response = await gateway.request(request)
        except AiProviderError as e:
            print(f"[{e.code}] {e}", file=sys.stderr)
            return 1
        except httpx.HTTPError as e:
            print(f"[HTTP_ERROR] {e}", file=sys.stderr)
            return 1

        if not args.stream:
            if args.json:
                print(json.dumps(response.to_dict(), ensure_ascii=False))
            else:
                print(response.text)
                print(f"\n-- {response.result.value}")
            return 0

        return await print_stream(response)


async def print_stream(response) -> int:
    async with response:
        try:
            async for message in iter_messages(response):
                if message.type == StreamEventType.CONTENT:
                    print(message.content, end="", flush=True)
                elif message.type == StreamEventType.END:
                    print(f"\n-- {message.result.value}")
                else:
                    print(f"\n[{message.error.get('code')}] {message.error.get('message')}", file=sys.stderr)
                    return 1
        except Exception as e:
            logger.error("Stream failed: %s", e, exc_info=True)
            print(f"\n[STREAM_ERROR] {e}", file=sys.stderr)
            return 1
    return 0


def main() -> None:
    args = parse_args()
    setup_logging()
    validate_settings()
    sys.exit(asyncio.run(ask(args)))


if __name__ == "__main__":
    main()
