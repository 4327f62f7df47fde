#!/usr/bin/env python3
"""
CLI for exercising IdeaStoreClient by hand.

Usage:
    python -m adapter.store.cli

Commands:
    ideas   - List ideas (store order)
    json    - List ideas as raw JSON
    post    - Submit a new idea
    like    - Increment an idea's like counter
    create  - Send a confirmation-path create for an idea
    status  - Show client configuration
"""

import cmd
import json
import shlex

from dotenv import load_dotenv

from adapter.models import Idea, IdeaSubmission
from adapter.store import (
    IdeaStoreClient,
    IdeaStoreError,
    ConfigurationError,
    TransportError,
    HttpError,
    FormatError,
)
from core import DEFAULT_USERNAME, avatar_initial, format_timestamp


load_dotenv()


def _print_verbose_error(e: IdeaStoreError):
    """Print verbose error information."""
    print("\n" + "=" * 60)
    print("✗ ERROR DETAILS")
    print("=" * 60)
    print(f"  Type: {e.kind}")
    print(f"  Message: {e}")

    if isinstance(e, ConfigurationError):
        print("\n  💡 Troubleshooting:")
        print("     - Set IDEA_BOARD_API_URL in the environment or .env")

    elif isinstance(e, TransportError):
        print("\n  💡 Troubleshooting:")
        print("     - Check the store is running and reachable")
        print("     - Nothing was retried: create/like may or may not have landed")

    elif isinstance(e, HttpError):
        if e.status_code:
            print(f"  Status Code: {e.status_code}")
        if e.response_text:
            print(f"  Response: {e.response_text[:500]}")

    elif isinstance(e, FormatError):
        if e.response_text:
            print(f"  Response: {e.response_text[:500]}")
        print("\n  💡 Troubleshooting:")
        print("     - The URL may point at something other than the idea store")

    print("=" * 60 + "\n")


class IdeaStoreCLI(cmd.Cmd):
    """Interactive CLI for testing IdeaStoreClient."""

    intro = """
╔═══════════════════════════════════════════════════════════════╗
║                   Idea Store CLI                               ║
║  Commands: ideas, post, like, create, status, help, quit       ║
╚═══════════════════════════════════════════════════════════════╝
"""
    prompt = "ideas> "

    def __init__(self, client: IdeaStoreClient = None):
        super().__init__()
        self.client = client or IdeaStoreClient()
        if self.client.is_configured:
            print(f"✓ IdeaStoreClient pointed at {self.client.base_url}")
        else:
            print("⚠ IdeaStoreClient has no base URL - calls will fail")

    def _print_idea(self, idea: Idea):
        """Pretty print an idea."""
        print(f"[{idea.idea_id}] ({avatar_initial(idea.username)}) {idea.username}  {format_timestamp(idea.timestamp)}")
        for text in (idea.explanation_a, idea.explanation_b, idea.explanation_c):
            if text:
                print(f"   {text}")
        print(f"   ♥ {idea.likes} likes")
        print()

    def _parse_id(self, arg: str, usage: str):
        try:
            return int(arg.strip())
        except ValueError:
            print(usage)
            return None

    def do_status(self, arg):
        """Show client configuration."""
        print("\n=== Idea Store Client ===")
        print(f"Configured: {'Yes' if self.client.is_configured else 'No'}")
        print(f"Base URL: {self.client.base_url or '(not set)'}")
        print(f"Timeout: {self.client.timeout or 'none'}")

    def do_ideas(self, arg):
        """
        List ideas in store order.

        Usage: ideas
        """
        try:
            ideas = self.client.list_ideas()
        except IdeaStoreError as e:
            _print_verbose_error(e)
            return

        print(f"\n=== {len(ideas)} ideas ===\n")
        for idea in ideas:
            self._print_idea(idea)

    def do_json(self, arg):
        """
        List ideas as JSON in the store's wire format.

        Usage: json
        """
        try:
            ideas = self.client.list_ideas()
        except IdeaStoreError as e:
            _print_verbose_error(e)
            return

        output = [idea.model_dump(mode="json", by_alias=True) for idea in ideas]
        print(json.dumps(output, indent=2, ensure_ascii=False))

    def do_post(self, arg):
        """
        Submit a new idea.

        Usage: post "<idea text>" ["<description>"] [username]
        """
        try:
            parts = shlex.split(arg)
        except ValueError as e:
            print(f"✗ {e}")
            return
        if not parts:
            print('Usage: post "<idea text>" ["<description>"] [username]')
            return

        submission = IdeaSubmission(
            username=parts[2] if len(parts) > 2 else DEFAULT_USERNAME,
            explanation_a=parts[0],
            description=parts[1] if len(parts) > 1 else "",
        )
        try:
            self.client.create_idea(submission)
            print("✓ Posted")
        except IdeaStoreError as e:
            _print_verbose_error(e)

    def do_like(self, arg):
        """
        Increment an idea's like counter. Every call adds one like.

        Usage: like <idea_id>
        """
        idea_id = self._parse_id(arg, "Usage: like <idea_id>")
        if idea_id is None:
            return
        try:
            self.client.increment_like(idea_id)
            print(f"✓ Liked idea {idea_id}")
        except IdeaStoreError as e:
            _print_verbose_error(e)

    def do_create(self, arg):
        """
        Send a confirmation-path create request.

        Usage: create <idea_id>
        """
        idea_id = self._parse_id(arg, "Usage: create <idea_id>")
        if idea_id is None:
            return
        try:
            self.client.request_create(idea_id, DEFAULT_USERNAME)
            print(f"✓ Create requested for idea {idea_id}")
        except IdeaStoreError as e:
            _print_verbose_error(e)

    def do_quit(self, arg):
        """Exit the CLI."""
        print("Goodbye!")
        return True

    def do_exit(self, arg):
        """Exit the CLI."""
        return self.do_quit(arg)

    def do_EOF(self, arg):
        """Handle Ctrl+D."""
        print()
        return self.do_quit(arg)

    def emptyline(self):
        """Do nothing on empty line."""
        pass


def main():
    """Run the CLI."""
    cli = IdeaStoreCLI()
    try:
        cli.cmdloop()
    except KeyboardInterrupt:
        print("\nGoodbye!")


if __name__ == "__main__":
    main()
