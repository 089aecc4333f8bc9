import asyncio
import sys
import json
import termios
from typing import Optional

from txdebug.analyzer import TransactionAnalyzer
from txdebug.client_protocol import UpstreamError
from txdebug.models import ProgressEvent
from txdebug.reporting import build_summary_text, format_failure, format_risks


def flush_input():
    """Flush standard input to avoid skipping prompts due to pasted multi-line text."""
    try:
        termios.tcflush(sys.stdin, termios.TCIFLUSH)
    except (termios.error, ValueError, OSError):
        pass


def print_progress(event: ProgressEvent):
    if event.type == "tool_call":
        print(f"  [turn {event.turn}] calling {', '.join(event.tool_names or [])}")
    elif event.type == "tool_result":
        print(f"  [turn {event.turn}] {event.tool_name}: {event.summary}")
    elif event.type == "final_answer":
        print(f"  [turn {event.turn}] writing final answer")


async def run_debug(tx_hash: str, network_id: str, question: Optional[str] = None):
    print(f"Starting analysis of {tx_hash} on network {network_id}...")
    analyzer = TransactionAnalyzer()
    try:
        result = await analyzer.analyze(tx_hash, network_id, on_progress=print_progress)

        print("\n" + "="*50)
        print("SUMMARY")
        print("="*50)
        print(build_summary_text(result))

        print("="*50)
        print("EXPLANATION")
        print("="*50)
        print(result.llm_explanation)

        if result.risk_flags:
            print("\n" + "="*50)
            print("RISKS")
            print("="*50)
            print(format_risks(result.risk_flags))

        if result.failure_reason:
            print("\n" + "="*50)
            print("FAILURE")
            print("="*50)
            print(format_failure(result.failure_reason))

        print("\n" + "="*50)
        print("JSON RESULT (Saved to result.json)")
        print("="*50)

        with open("result.json", "w") as f:
            json.dump(result.model_dump(mode="json", by_alias=True), f, indent=2)

        if question:
            print(f"\nQ: {question}")
            answer = await analyzer.answer_question(question, result)
            print(f"A: {answer}")

        print("Done.")
    finally:
        await analyzer.close()


def main():
    # Check if running in interactive mode (no args provided)
    if len(sys.argv) < 3:
        print("EVM Transaction Debugger - Interactive Mode")
        print("=" * 40)
        print("\nUsage: txdebug <tx_hash> <network_id> [question]")
        print()

        try:
            tx_hash = input("Enter transaction hash: ").strip()
            while not tx_hash:
                print("Transaction hash is required.")
                tx_hash = input("Enter transaction hash: ").strip()

            flush_input()
            network_id = input("Enter network id (default: 1): ").strip() or "1"
            question = input("Follow-up question (optional): ").strip() or None
        except KeyboardInterrupt:
            print("\nOperation cancelled by user.")
            sys.exit(0)
    else:
        tx_hash = sys.argv[1]
        network_id = sys.argv[2]
        question = " ".join(sys.argv[3:]) or None

    try:
        asyncio.run(run_debug(tx_hash, network_id, question))
    except ValueError as e:
        print(f"Error: {e}")
        sys.exit(1)
    except UpstreamError as e:
        print(f"Upstream error ({e.service}): {e}")
        sys.exit(2)
    except KeyboardInterrupt:
        print("\nOperation cancelled by user.")
        sys.exit(0)


if __name__ == "__main__":
    main()
