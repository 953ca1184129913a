###########EXTERNAL IMPORTS############

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

#######################################

#############LOCAL IMPORTS#############

from util.debug import LoggerManager
from model.messages import MessagesPage
from model.page import JSONPageMetadata, PageMetadata, SenMLPageMetadata

#######################################


class MessageRepository(ABC):
    """
    Storage contract shared by every backend, for one message kind.
    """

    @abstractmethod
    def retrieve(self, pm: PageMetadata) -> MessagesPage:
        """Returns one page of messages (or aggregated buckets) matching the page metadata."""

        pass

    @abstractmethod
    def backup(self, pm: PageMetadata) -> MessagesPage:
        """Returns every message matching the filters, without pagination."""

        pass

    @abstractmethod
    def restore(self, messages: Sequence[Any]) -> None:
        """Reinserts previously exported messages verbatim, atomically."""

        pass

    @abstractmethod
    def remove(self, pm: PageMetadata) -> None:
        """Deletes every message matching the filters."""

        pass


@dataclass
class Backup:
    """
    Whole-store export.

    Attributes:
        senml (List[Any]): Every SenML message.
        json (Dict[str, List[Dict[str, Any]]]): JSON message maps keyed by format name.
    """

    senml: List[Any] = field(default_factory=list)
    json: Dict[str, List[Dict[str, Any]]] = field(default_factory=dict)


class ReadersService:
    """
    Entry point of the API layer into the store.

    Validates page metadata and routes each call to the SenML or JSON repository of the
    configured backend.

    Attributes:
        senml (MessageRepository): SenML repository.
        json (MessageRepository): JSON repository.
    """

    def __init__(self, senml: MessageRepository, json: MessageRepository):
        self.senml = senml
        self.json = json

    def list_senml(self, pm: SenMLPageMetadata) -> MessagesPage:
        pm.validate()
        return self.senml.retrieve(pm)

    def list_json(self, pm: JSONPageMetadata) -> MessagesPage:
        pm.validate()
        return self.json.retrieve(pm)

    def backup_senml(self, pm: Optional[SenMLPageMetadata] = None) -> MessagesPage:
        return self.senml.backup(pm or SenMLPageMetadata())

    def backup_json(self, pm: Optional[JSONPageMetadata] = None) -> MessagesPage:
        return self.json.backup(pm or JSONPageMetadata())

    def restore_senml(self, messages: Sequence[Any]) -> None:
        self.senml.restore(messages)

    def restore_json(self, messages: Sequence[Any], format: str) -> None:
        self.json.restore(messages, format=format)

    def remove_senml(self, pm: SenMLPageMetadata) -> None:
        pm.validate()
        self.senml.remove(pm)

    def remove_json(self, pm: JSONPageMetadata) -> None:
        pm.validate()
        self.json.remove(pm)

    def backup(self, formats: Sequence[str]) -> Backup:
        """
        Exports every SenML message and every message of the given JSON formats.

        Args:
            formats: JSON format names to export.

        Returns:
            Backup: The exported messages.
        """

        logger = LoggerManager.get_logger(__name__)

        backup = Backup(senml=self.backup_senml().messages)
        for format in formats:
            backup.json[format] = self.backup_json(JSONPageMetadata(format=format)).messages

        logger.info(f"Backed up {len(backup.senml)} SenML messages and {sum(len(m) for m in backup.json.values())} JSON messages")
        return backup

    def restore(self, backup: Backup) -> None:
        """
        Restores a whole-store export, SenML first, then one format at a time.

        Each repository call is atomic on its own.
        """

        if backup.senml:
            self.restore_senml(backup.senml)

        for format, messages in backup.json.items():
            if messages:
                self.restore_json(messages, format)
