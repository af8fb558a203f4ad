# chatbridge/model/prompt.py

from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Union

from chatbridge.exceptions import InvalidPromptError
from chatbridge.model.messages import Message, MessageType, SystemMessage, UserMessage
from chatbridge.model.options import ChatOptions


@dataclass(init=False)
class Prompt:
    """
    A conversation plus the options to run it with.

    A plain string is shorthand for a single user message.
    """
    messages: List[Message] = field(default_factory=list)
    options: Optional[ChatOptions] = None

    def __init__(
        self,
        messages: Union[str, Message, Sequence[Message]],
        options: Optional[ChatOptions] = None,
    ):
        if isinstance(messages, str):
            self.messages = [UserMessage(messages)]
        elif isinstance(messages, (list, tuple)):
            self.messages = list(messages)
        else:
            self.messages = [messages]
        self.options = options

    @property
    def system_messages(self) -> List[SystemMessage]:
        return [m for m in self.messages if m.message_type == MessageType.SYSTEM]

    @property
    def system_message(self) -> Optional[SystemMessage]:
        found = self.system_messages
        return found[0] if found else None

    @property
    def non_system_messages(self) -> List[Message]:
        return [m for m in self.messages if m.message_type != MessageType.SYSTEM]

    def with_options(self, options: Optional[ChatOptions]) -> "Prompt":
        return Prompt(list(self.messages), options)

    def check_single_system_message(self) -> None:
        if len(self.system_messages) > 1:
            raise InvalidPromptError("Only one system message is allowed in the prompt.")
