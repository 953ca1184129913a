###########EXTERNAL IMPORTS############

import pytest
from typing import Any, List, Sequence

#######################################

#############LOCAL IMPORTS#############

from db.exceptions import InvalidQuery
from model.messages import MessagesPage, SenMLMessage
from model.page import JSONPageMetadata, PageMetadata, SenMLPageMetadata
from readers.service import Backup, MessageRepository, ReadersService

#######################################


class DummyRepository(MessageRepository):
    def __init__(self, messages: List[Any]):
        self.messages = messages
        self.retrieved: List[PageMetadata] = []
        self.backed_up: List[PageMetadata] = []
        self.removed: List[PageMetadata] = []
        self.restored: List[Any] = []

    def retrieve(self, pm: PageMetadata) -> MessagesPage:
        self.retrieved.append(pm)
        return MessagesPage(total=len(self.messages), messages=self.messages[: pm.limit])

    def backup(self, pm: PageMetadata) -> MessagesPage:
        self.backed_up.append(pm)
        return MessagesPage(total=len(self.messages), messages=list(self.messages))

    def restore(self, messages: Sequence[Any], **kwargs) -> None:
        self.restored.append((list(messages), kwargs))

    def remove(self, pm: PageMetadata) -> None:
        self.removed.append(pm)


@pytest.fixture
def senml_repo() -> DummyRepository:
    return DummyRepository([SenMLMessage(name="a", value=1), SenMLMessage(name="b", value=2)])


@pytest.fixture
def json_repo() -> DummyRepository:
    return DummyRepository([{"created": 1.0, "payload": {"t": 1}}])


@pytest.fixture
def service(senml_repo, json_repo) -> ReadersService:
    return ReadersService(senml=senml_repo, json=json_repo)


def test_list_routes_by_kind(service, senml_repo, json_repo):
    page = service.list_senml(SenMLPageMetadata(limit=1))
    assert page.total == 2
    assert len(page.messages) == 1

    service.list_json(JSONPageMetadata(format="weather"))
    assert json_repo.retrieved[0].format == "weather"
    assert len(senml_repo.retrieved) == 1


def test_invalid_page_never_reaches_the_repository(service, senml_repo, json_repo):
    with pytest.raises(InvalidQuery):
        service.list_senml(SenMLPageMetadata(offset=-1))

    with pytest.raises(InvalidQuery):
        service.remove_json(JSONPageMetadata(format=""))

    assert senml_repo.retrieved == []
    assert json_repo.removed == []


def test_backup_exports_every_format(service, json_repo):
    backup = service.backup(["weather", "power"])

    assert [m.name for m in backup.senml] == ["a", "b"]
    assert set(backup.json) == {"weather", "power"}
    assert [pm.format for pm in json_repo.backed_up] == ["weather", "power"]


def test_restore_routes_formats(service, senml_repo, json_repo):
    backup = Backup(senml=[SenMLMessage(name="a", value=1)], json={"weather": [{"created": 1.0, "payload": {}}], "empty": []})

    service.restore(backup)

    assert len(senml_repo.restored) == 1
    assert json_repo.restored == [([{"created": 1.0, "payload": {}}], {"format": "weather"})]
