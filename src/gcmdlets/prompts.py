import enum
import logging
from typing import Callable, Optional

from rich.console import Console
from rich.prompt import Prompt

logger = logging.getLogger(__name__)


class Answer(enum.Enum):
    YES = "y"
    YES_TO_ALL = "a"
    NO = "n"
    NO_TO_ALL = "l"


ANSWER_HELP = "[Y] Yes  [A] Yes to All  [N] No  [L] No to All"


def ask_console(message: str, console: Optional[Console] = None) -> Answer:
    """Ask on the terminal. Prompts go to stderr so stdout stays parseable."""
    console = console or Console(stderr=True)
    console.print(f"[bold]{message}[/bold]")
    reply = Prompt.ask(
        ANSWER_HELP,
        console=console,
        choices=[a.value for a in Answer],
        default=Answer.NO.value,
        show_choices=False,
        case_sensitive=False,
    )
    return Answer(reply.lower())


class ConfirmationGate:
    """Yes/no/all/none confirmation shared across the targets of one command.

    ``force`` answers yes to everything without asking. A "to all" answer is
    remembered for the remaining targets.
    """

    def __init__(
        self,
        force: bool = False,
        ask: Callable[[str], Answer] = ask_console,
    ):
        self.force = force
        self._ask = ask
        self._sticky: Optional[bool] = None

    def confirm(self, message: str) -> bool:
        if self.force:
            return True
        if self._sticky is not None:
            return self._sticky

        answer = self._ask(message)
        logger.debug(f"Confirmation '{message}' answered {answer.name}")
        if answer is Answer.YES_TO_ALL:
            self._sticky = True
        elif answer is Answer.NO_TO_ALL:
            self._sticky = False
        return answer in (Answer.YES, Answer.YES_TO_ALL)
