#!/usr/bin/env python3
"""
Main entry point for the Ollama Chat Bridge application.
"""

import argparse
import json
import sys
import time
import uuid

from dotenv import load_dotenv

# Load environment variables from .env file if present
load_dotenv()

# Import after loading environment variables
from chatbridge.app import ChatBridge
from chatbridge.config import BridgeConfig, setup_logging
from chatbridge.errors import ChatBridgeError
from chatbridge.tool_server import run_server


def print_header():
    """Print the application header."""
    width = 70
    header = [
        "Ollama Chat Bridge",
        "------------------",
        "",
        "Conversations with tool calling, durable history",
        "and knowledge-base grounding",
    ]

    print('╔' + '═' * (width - 2) + '╗')
    for line in header:
        padding = (width - 2 - len(line))
        left_padding = padding // 2
        right_padding = padding - left_padding
        print('║' + ' ' * left_padding + line + ' ' * right_padding + '║')
    print('╚' + '═' * (width - 2) + '╝')


def print_result(result, show_history: bool = False):
    if result is None:
        print("\nNo answer: the exchange failed, see the log for details.\n")
        return
    print("\n=== Response ===")
    print(result.answer)
    print("================")
    print(f"Tokens: {result.usage.input_tokens} in / {result.usage.output_tokens} out"
          + (" | conversation finished" if result.finished else ""))
    if show_history:
        print(json.dumps(result.history(), indent=2, ensure_ascii=False))
    print()


def run_interactive_mode(bridge: ChatBridge, args):
    """Run the bridge in interactive mode."""
    session_id = args.session or str(uuid.uuid4())
    print(f"Ollama Chat Bridge (Interactive Mode), session {session_id}")
    print(f"Default model: {bridge.config.ollama.model}")

    while True:
        try:
            user_input = input("Prompt (or 'exit', 'help', 'health', 'tools', 'models', 'history'): ").strip()
            if not user_input:
                continue

            command = user_input.lower()
            if command in ('exit', 'quit'):
                break
            elif command == 'help':
                print("\n=== Available Commands ===")
                print("health   - check that Ollama is reachable")
                print("models   - list models available in Ollama")
                print("tools    - list tools offered to the model")
                print("history  - show the current session history")
                print("exit     - leave interactive mode")
                print("Anything else is sent to the model.")
                print("==========================\n")
            elif command == 'health':
                print("\n=== Health Check ===")
                print(f"Ollama API: {'OK' if bridge.ollama.check_health() else 'NOT OK'}")
                print(f"Knowledge base chunks: {len(bridge.vector_store)}")
                print("====================\n")
            elif command == 'models':
                print("\n=== Available Models ===")
                for model in bridge.ollama.list_models():
                    print(f"- {model}")
                print("========================\n")
            elif command == 'tools':
                print("\n=== Available Tools ===")
                for descriptor in bridge.registry.list_all():
                    print(f"  {descriptor.name}: {descriptor.description}")
                print("=======================\n")
            elif command == 'history':
                session = bridge.sessions.get(session_id)
                turns = session.turns if session else []
                print(json.dumps([t.as_history_entry() for t in turns], indent=2, ensure_ascii=False))
            else:
                print_result(run_prompt(bridge, args, session_id, user_input))
        except (KeyboardInterrupt, EOFError):
            print("\nExiting...")
            break
        except ChatBridgeError as e:
            print(f"\nError: {e}\n")


def run_prompt(bridge: ChatBridge, args, session_id: str, prompt: str):
    orchestrator = bridge.orchestrator
    if args.structured:
        return orchestrator.structured_chat(session_id, prompt, args.role, model=args.model,
                                            temperature=args.temperature)
    return orchestrator.tooled_chat(
        session_id,
        prompt,
        args.role,
        use_retrieval=args.rag,
        min_similarity=args.min_similarity,
        model=args.model,
        temperature=args.temperature,
        use_tools=not args.no_tools,
    )


def main():
    """Main entry point for the Ollama Chat Bridge CLI."""
    parser = argparse.ArgumentParser(description="Chat with an Ollama model that can call local and remote tools")
    parser.add_argument("--interactive", "-i", action="store_true", help="Enable interactive mode")
    parser.add_argument("--prompt", "-p", type=str, help="Prompt to send (non-interactive mode)")
    parser.add_argument("--single", action="store_true", help="Send --prompt as a stateless one-shot completion")
    parser.add_argument("--session", "-s", type=str, help="Session id to continue (default: a new one)")
    parser.add_argument("--role", "-r", type=str, help="System role for the session")
    parser.add_argument("--model", "-m", type=str, help="Model override")
    parser.add_argument("--temperature", "-t", type=float, help="Temperature override")
    parser.add_argument("--structured", action="store_true", help="Answer through the structured answer tool")
    parser.add_argument("--no-tools", action="store_true", help="Do not offer tools to the model")
    parser.add_argument("--rag", action="store_true", help="Ground prompts in the knowledge base")
    parser.add_argument("--min-similarity", type=float, help="Similarity threshold for --rag")
    parser.add_argument("--history", action="store_true", help="Print the session history after the answer")
    parser.add_argument("--ingest", type=str, help="Add a .txt, .md, .json or .pdf document to the knowledge base")
    parser.add_argument("--chunk-size", type=int, help="Words per chunk when ingesting")
    parser.add_argument("--overlap", type=int, help="Words shared by consecutive chunks when ingesting")
    parser.add_argument("--delimiter", action="append", help="Split ingested text on this string (repeatable)")
    parser.add_argument("--serve-tools", action="store_true", help="Expose the local tools over the tool protocol")
    parser.add_argument("--port", type=int, default=8000, help="Port for --serve-tools")
    parser.add_argument("--health", action="store_true", help="Check that Ollama is reachable")
    parser.add_argument("--report", action="store_true", help="Run the scheduled report loop until interrupted")

    args = parser.parse_args()

    if not any((args.interactive, args.prompt, args.ingest, args.serve_tools, args.health, args.report)):
        parser.print_help()
        return 0

    # Load configuration from environment
    config = BridgeConfig.from_env()
    logger = setup_logging(config.logging)
    bridge = ChatBridge(config)

    try:
        if args.health:
            healthy = bridge.ollama.check_health()
            print(f"Ollama API: {'OK' if healthy else 'NOT OK'}")
            return 0 if healthy else 1

        if args.ingest:
            count = bridge.augmenter.ingest(args.ingest, args.chunk_size, args.overlap, args.delimiter)
            print(f"Stored {count} chunk(s) from {args.ingest}")
            return 0

        if args.serve_tools:
            run_server(bridge.registry, port=args.port)
            return 0

        if args.report:
            bridge.start_background(reports=True)
            logger.info("Report scheduler running, press Ctrl+C to stop")
            try:
                while True:
                    time.sleep(1)
            except KeyboardInterrupt:
                pass
            return 0

        print_header()
        if args.interactive:
            run_interactive_mode(bridge, args)
            return 0

        if args.single:
            result = bridge.orchestrator.single_prompt(args.prompt, model=args.model, temperature=args.temperature)
        else:
            result = run_prompt(bridge, args, args.session or str(uuid.uuid4()), args.prompt)
        print_result(result, show_history=args.history)
        return 0 if result is not None else 1
    except (ChatBridgeError, ValueError, OSError) as e:
        logger.error(f"{type(e).__name__}: {e}")
        return 1
    finally:
        bridge.shutdown()


if __name__ == "__main__":
    sys.exit(main())
