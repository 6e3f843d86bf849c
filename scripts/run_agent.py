"""CLI entry point to ask the medical-record agent one question."""

import argparse
import json
import logging

from healthnav.agent.graph import build_graph, run_config
from healthnav.service import make_turn_config


class PrintStatusChannel:
    """Prints every status event the turn pushes."""

    def send_to_user(self, user_id, message):
        print(f"[status -> {user_id}] {json.dumps(message, ensure_ascii=False)}")


def main() -> None:
    parser = argparse.ArgumentParser(
        description="healthnav — ask a question about a patient's medical record",
    )
    parser.add_argument("--patient", type=str, required=True, help="Patient id")
    parser.add_argument("--question", type=str, required=True, help="Question (in quotes)")
    parser.add_argument("--user", type=str, default="cli", help="User id for status events")
    parser.add_argument("--lang", type=str, default="en", help="Preferred language")
    parser.add_argument("--mode", choices=["fast", "advanced"], default="fast")
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Show each graph step and the curated context",
    )
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    config = make_turn_config(
        args.patient,
        args.user,
        status=PrintStatusChannel(),
        user_lang=args.lang,
        chat_mode=args.mode,
    )

    graph = build_graph()
    state = {"messages": [{"role": "user", "content": args.question}]}
    answer = ""
    for chunk in graph.stream(state, run_config(config), stream_mode="updates"):
        for node, update in chunk.items():
            update = update or {}
            if args.verbose:
                print(f"-- {node}")
                if node == "call_model":
                    print(update.get("curated_context", "")[:1000])
            if update.get("messages"):
                answer = update["messages"][-1].get("content", "")

    print("\n" + "=" * 60)
    print("ANSWER")
    print("=" * 60)
    print(answer)


if __name__ == "__main__":
    main()
