from __future__ import annotations

import asyncio
import shlex
import traceback
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

try:
    import readline
except ImportError:
    readline = None

from loguru import logger

from bracketdesk.adapters.broker.ibkr_connection import IBKRConnection
from bracketdesk.adapters.presentation.marker_actor import MarkerActor
from bracketdesk.adapters.runtime.serial_executor import SerialExecutor
from bracketdesk.core.arming.commands import (
    Arm,
    BreakEven,
    Close,
    Command,
    Confirm,
    Trail,
    command_for_direction_button,
)
from bracketdesk.core.arming.controller import DeskStatus, TradeController
from bracketdesk.core.arming.results import OperationResult
from bracketdesk.core.markers.models import LineKind
from bracketdesk.core.ops.events import CliErrorLogged
from bracketdesk.core.orders.models import Direction
from bracketdesk.core.orders.ports import EventBus

CommandHandler = Callable[[list[str]], Awaitable[None]]

_DIRECTION_ALIASES = {
    "long": Direction.LONG,
    "buy": Direction.LONG,
    "l": Direction.LONG,
    "short": Direction.SHORT,
    "sell": Direction.SHORT,
    "s": Direction.SHORT,
}
_LINE_ALIASES = {
    "stop": LineKind.STOP,
    "sl": LineKind.STOP,
    "target": LineKind.TARGET,
    "tp": LineKind.TARGET,
}


@dataclass(frozen=True)
class CommandSpec:
    name: str
    handler: CommandHandler
    help: str
    usage: str
    aliases: tuple[str, ...] = ()


class REPL:
    def __init__(
        self,
        controller: TradeController,
        executor: SerialExecutor,
        markers: MarkerActor,
        *,
        connection: Optional[IBKRConnection] = None,
        event_bus: Optional[EventBus] = None,
        prompt: str = "desk> ",
        echo: Callable[[str], None] = print,
    ) -> None:
        self._controller = controller
        self._executor = executor
        self._markers = markers
        self._connection = connection
        self._event_bus = event_bus
        self._prompt = prompt
        self._echo = echo
        self._commands: dict[str, CommandSpec] = {}
        self._aliases: dict[str, str] = {}
        self._should_exit = False
        self._register_commands()
        self._setup_readline()

    @property
    def should_exit(self) -> bool:
        return self._should_exit

    async def run(self) -> None:
        self._echo("Bracket desk (type 'help' to list commands).")
        while not self._should_exit:
            try:
                line = await asyncio.to_thread(input, self._prompt)
            except EOFError:
                self._echo("")
                break
            await self.execute(line)

    async def execute(self, line: str) -> None:
        line = line.strip()
        if not line:
            return
        cmd_name, args = self._parse_line(line)
        if cmd_name is None:
            return
        spec = self._resolve_command(cmd_name)
        if not spec:
            self._echo(f"Unknown command: {cmd_name}. Type 'help' to list commands.")
            return
        try:
            await spec.handler(args)
        except Exception as exc:
            self._log_cli_error(exc, cmd_name, line)
            self._echo(f"Command error: {type(exc).__name__}: {exc}")

    def _register_commands(self) -> None:
        self._register(
            CommandSpec(
                name="buy",
                handler=self._cmd_buy,
                help="Arm long, or confirm when already armed long.",
                usage="buy",
                aliases=("b",),
            )
        )
        self._register(
            CommandSpec(
                name="sell",
                handler=self._cmd_sell,
                help="Arm short, or confirm when already armed short.",
                usage="sell",
                aliases=("s",),
            )
        )
        self._register(
            CommandSpec(
                name="arm",
                handler=self._cmd_arm,
                help="Arm a direction and draw the default bracket lines.",
                usage="arm long|short",
            )
        )
        self._register(
            CommandSpec(
                name="confirm",
                handler=self._cmd_confirm,
                help="Submit the armed bracket.",
                usage="confirm",
                aliases=("go",),
            )
        )
        self._register(
            CommandSpec(
                name="close",
                handler=self._cmd_close,
                help="Cancel working orders, flatten and reset.",
                usage="close",
                aliases=("flat", "x"),
            )
        )
        self._register(
            CommandSpec(
                name="be",
                handler=self._cmd_break_even,
                help="Move the stop to break-even (needs at least 1 tick of profit).",
                usage="be",
                aliases=("breakeven",),
            )
        )
        self._register(
            CommandSpec(
                name="trail",
                handler=self._cmd_trail,
                help="Move the stop to the trail offset from the market.",
                usage="trail",
            )
        )
        self._register(
            CommandSpec(
                name="drag",
                handler=self._cmd_drag,
                help="Move the stop or target line, as if dragged on the chart.",
                usage="drag stop|target <price>",
                aliases=("move",),
            )
        )
        self._register(
            CommandSpec(
                name="release",
                handler=self._cmd_release,
                help="Finish a drag and push the final prices to working orders.",
                usage="release",
                aliases=("up",),
            )
        )
        self._register(
            CommandSpec(
                name="status",
                handler=self._cmd_status,
                help="Show desk state, lines and broker connection.",
                usage="status",
                aliases=("st",),
            )
        )
        self._register(
            CommandSpec(
                name="help",
                handler=self._cmd_help,
                help="List commands or show usage for one.",
                usage="help [command]",
                aliases=("?",),
            )
        )
        self._register(
            CommandSpec(
                name="quit",
                handler=self._cmd_quit,
                help="Exit the desk. Working orders are left with the broker.",
                usage="quit",
                aliases=("exit", "q"),
            )
        )

    def _register(self, spec: CommandSpec) -> None:
        self._commands[spec.name] = spec
        for alias in spec.aliases:
            self._aliases[alias] = spec.name

    def _setup_readline(self) -> None:
        if readline is None:
            return
        readline.set_completer(self._complete)
        readline.parse_and_bind("tab: complete")

    def _complete(self, text: str, state: int) -> Optional[str]:
        matches = sorted(name for name in self._commands if name.startswith(text))
        if state < len(matches):
            return matches[state]
        return None

    def _resolve_command(self, name: str) -> Optional[CommandSpec]:
        if name in self._commands:
            return self._commands[name]
        target = self._aliases.get(name)
        if target:
            return self._commands.get(target)
        return None

    def _parse_line(self, line: str) -> tuple[Optional[str], list[str]]:
        try:
            tokens = shlex.split(line)
        except ValueError as exc:
            self._echo(f"Parse error: {exc}")
            return None, []
        if not tokens:
            return None, []
        return tokens[0].lower(), tokens[1:]

    async def _cmd_buy(self, _args: list[str]) -> None:
        await self._press_direction(Direction.LONG)

    async def _cmd_sell(self, _args: list[str]) -> None:
        await self._press_direction(Direction.SHORT)

    async def _cmd_arm(self, args: list[str]) -> None:
        if not args or args[0].lower() not in _DIRECTION_ALIASES:
            self._echo("Usage: arm long|short")
            return
        await self._dispatch(Arm(_DIRECTION_ALIASES[args[0].lower()]))

    async def _cmd_confirm(self, _args: list[str]) -> None:
        await self._dispatch(Confirm())

    async def _cmd_close(self, _args: list[str]) -> None:
        await self._dispatch(Close())

    async def _cmd_break_even(self, _args: list[str]) -> None:
        await self._dispatch(BreakEven())

    async def _cmd_trail(self, _args: list[str]) -> None:
        await self._dispatch(Trail())

    async def _cmd_drag(self, args: list[str]) -> None:
        if len(args) != 2 or args[0].lower() not in _LINE_ALIASES:
            self._echo("Usage: drag stop|target <price>")
            return
        try:
            price = float(args[1])
        except ValueError:
            self._echo(f"Invalid price: {args[1]}")
            return
        if price <= 0:
            self._echo("Price must be greater than zero.")
            return
        kind = _LINE_ALIASES[args[0].lower()]
        if not self._markers.report_user_move(kind, price):
            self._echo(f"No {kind.value} line to drag.")
            return
        self._report(await self._executor.call(self._controller.poll_markers))

    async def _cmd_release(self, _args: list[str]) -> None:
        self._report(await self._executor.call(self._controller.finalize_drag))

    async def _cmd_status(self, _args: list[str]) -> None:
        status = await self._executor.call(self._controller.status)
        for line in format_status(status):
            self._echo(line)
        if self._connection is not None:
            conn = self._connection.status()
            state = "connected" if conn["connected"] else "disconnected"
            self._echo(f"broker: {state} - {conn['host']}:{conn['port']} client_id={conn['client_id']}")

    async def _cmd_help(self, args: list[str]) -> None:
        if args:
            name = args[0].lower()
            spec = self._resolve_command(name)
            if not spec:
                self._echo(f"No such command: {name}")
                return
            self._echo(f"{spec.name}: {spec.help}")
            self._echo(f"Usage: {spec.usage}")
            return
        for spec in sorted(self._commands.values(), key=lambda s: s.name):
            self._echo(f"{spec.name:<10} {spec.help}")

    async def _cmd_quit(self, _args: list[str]) -> None:
        self._should_exit = True

    async def _press_direction(self, direction: Direction) -> None:
        def _press() -> OperationResult:
            command = command_for_direction_button(direction, self._controller.state)
            return self._controller.handle(command)

        self._report(await self._executor.call(_press))

    async def _dispatch(self, command: Command) -> None:
        self._report(await self._executor.call(self._controller.handle, command))

    def _report(self, result: OperationResult) -> None:
        if result.is_ok:
            if result.message:
                self._echo(result.message)
            return
        if result.is_refused:
            reason = result.reason.value if result.reason else "refused"
            detail = f": {result.message}" if result.message else ""
            self._echo(f"Refused ({reason}){detail}")
            return
        self._echo(f"Error: {result.message}")

    def _log_cli_error(self, exc: BaseException, command: Optional[str], raw_input: str) -> None:
        logger.opt(exception=exc).error("Command {} failed", command)
        if self._event_bus is None:
            return
        self._event_bus.publish(
            CliErrorLogged.now(
                message=str(exc),
                error_type=type(exc).__name__,
                traceback="".join(traceback.format_exception(type(exc), exc, exc.__traceback__)),
                command=command,
                raw_input=raw_input,
            )
        )


def format_status(status: DeskStatus) -> list[str]:
    lines = [f"state: {status.description}"]
    if status.entry_price is not None:
        lines.append(
            f"entry {status.entry_price:.2f}  stop {status.stop_price:.2f}  target {status.target_price:.2f}"
        )
    if status.position_qty:
        lines.append(f"position: {status.position_qty} @ {status.avg_entry_price:.2f}")
    if status.pending_qty:
        lines.append(f"pending entry: {status.pending_qty}")
    lines.append(f"tick size: {status.tick_size}")
    if status.self_check:
        lines.append(status.self_check)
    if status.faults.has_fault:
        lines.append(f"faults: {status.faults.count} (last: {status.faults.last_message})")
    return lines
