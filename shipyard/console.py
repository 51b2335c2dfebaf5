"""Operator console: prompts, selections and messages."""

from typing import Protocol, Sequence

import click

from shipyard.errors import UserInputError


class Console(Protocol):
    """Interactive console used by providers and the configurator."""

    interactive: bool

    def prompt(self, message: str, default: str = "", secret: bool = False) -> str:
        """
        Ask for free-form text.

        Args:
            message: Question shown to the operator
            default: Value returned when the operator just hits enter
            secret: Hide the typed input

        Returns:
            Answer text
        """

    def select(self, message: str, options: Sequence[str]) -> int:
        """
        Ask the operator to pick one option.

        Returns:
            Zero-based index of the chosen option
        """

    def confirm(self, message: str, default: bool = False) -> bool:
        """Ask a yes/no question."""

    def message(self, text: str) -> None:
        """Show informational text."""


class ClickConsole:
    """Console implementation backed by click prompts."""

    def __init__(self, interactive: bool = True, err: bool = False) -> None:
        self.interactive = interactive
        self._err = err

    def _require_interactive(self, message: str) -> None:
        if not self.interactive:
            raise UserInputError(f"Input required but prompting is disabled: {message}")

    def prompt(self, message: str, default: str = "", secret: bool = False) -> str:
        self._require_interactive(message)
        answer = click.prompt(
            message,
            default=default or None,
            hide_input=secret,
            show_default=bool(default) and not secret,
            err=self._err,
        )
        return str(answer).strip()

    def select(self, message: str, options: Sequence[str]) -> int:
        self._require_interactive(message)
        if not options:
            raise UserInputError(f"No options available: {message}")
        click.echo(message, err=self._err)
        for idx, option in enumerate(options, start=1):
            click.echo(f"  {idx}) {option}", err=self._err)
        choice = click.prompt(
            "Choice",
            type=click.IntRange(1, len(options)),
            default=1,
            err=self._err,
        )
        return int(choice) - 1

    def confirm(self, message: str, default: bool = False) -> bool:
        if not self.interactive:
            return default
        return bool(click.confirm(message, default=default, err=self._err))

    def message(self, text: str) -> None:
        click.echo(text, err=self._err)
