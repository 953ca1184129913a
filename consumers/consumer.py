###########EXTERNAL IMPORTS############

from abc import ABC, abstractmethod
from typing import List, Union

#######################################

#############LOCAL IMPORTS#############

from db.exceptions import InvalidMessage
from model.messages import JSONMessages, SenMLMessage

#######################################

ConsumableMessage = Union[List[SenMLMessage], SenMLMessage, JSONMessages]


class Consumer(ABC):
    """
    Contract between the delivery mechanism and the writers.

    `consume` receives one already transformed message: a SenML batch (or single record)
    or a JSON batch, and dispatches it to the matching save path.
    """

    def consume(self, message: ConsumableMessage) -> None:
        """
        Persists one message, dispatching on its shape.

        Raises:
            InvalidMessage: If the message is neither SenML nor JSON.
        """

        if isinstance(message, JSONMessages):
            self.save_json(message)
        elif isinstance(message, SenMLMessage):
            self.save_senml([message])
        elif isinstance(message, list) and all(isinstance(m, SenMLMessage) for m in message):
            self.save_senml(message)
        else:
            raise InvalidMessage(f"Unsupported message type {type(message).__name__}")

    @abstractmethod
    def save_senml(self, messages: List[SenMLMessage]) -> None:
        pass

    @abstractmethod
    def save_json(self, messages: JSONMessages) -> None:
        pass
