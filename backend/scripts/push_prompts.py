"""Push TechRec prompts to Langfuse as versioned chat prompts.

The embedded fallbacks in app/core/fallback_prompts.py are the source of
truth for the first version. Their str.format placeholders ({cv_text}) are
converted to Langfuse mustache variables ({{cv_text}}). Each push creates a
new version under LANGFUSE_PROMPT_LABEL; older versions stay in Langfuse.

Usage:
    python scripts/push_prompts.py                      # all prompts
    python scripts/push_prompts.py --only techrec-outreach
    python scripts/push_prompts.py --dry-run            # print, don't push
"""

import argparse
import string
import sys
from pathlib import Path

from dotenv import load_dotenv
load_dotenv(Path(__file__).resolve().parent.parent / ".env")

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from langfuse import Langfuse  # noqa: E402

from app.config import load_settings  # noqa: E402
from app.core.fallback_prompts import FALLBACK_PROMPTS  # noqa: E402


def to_mustache(template: str) -> str:
    """Rewrite a str.format template as a Langfuse template ("{{" escapes become "{")."""
    out = []
    for literal, field, _spec, _conv in string.Formatter().parse(template):
        out.append(literal)
        if field is not None:
            out.append("{{" + field + "}}")
    return "".join(out)


def build_chat_prompt(prompt: dict) -> list[dict]:
    return [
        {"role": "system", "content": prompt["system"]},
        {"role": "user", "content": to_mustache(prompt["user"])},
    ]


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Seed or update TechRec prompts in Langfuse")
    parser.add_argument("--only", choices=sorted(FALLBACK_PROMPTS), action="append",
                        help="push only this prompt (repeatable)")
    parser.add_argument("--dry-run", action="store_true", help="print the prompts instead of pushing")
    args = parser.parse_args(argv)

    settings = load_settings()
    names = args.only or list(FALLBACK_PROMPTS)

    if args.dry_run:
        for name in names:
            print(f"── {name} ──")
            for message in build_chat_prompt(FALLBACK_PROMPTS[name]):
                print(f"[{message['role']}]\n{message['content']}\n")
        return 0

    if not settings.langfuse_public_key or not settings.langfuse_secret_key:
        print("Error: LANGFUSE_PUBLIC_KEY and LANGFUSE_SECRET_KEY must be set")
        return 1

    client = Langfuse(
        public_key=settings.langfuse_public_key,
        secret_key=settings.langfuse_secret_key,
        host=settings.langfuse_host,
    )
    for name in names:
        prompt = FALLBACK_PROMPTS[name]
        client.create_prompt(
            name=name,
            type="chat",
            prompt=build_chat_prompt(prompt),
            labels=[settings.langfuse_prompt_label],
            config={"model": settings.llm_model, **prompt["config"]},
        )
        print(f"Pushed: {name} (label '{settings.langfuse_prompt_label}')")

    client.flush()
    print(f"\n{len(names)} prompt(s) pushed to {settings.langfuse_host}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
