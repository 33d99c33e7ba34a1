import pytest

from store import MemoryExpenseStore


class FakeChartService:
    def __init__(self, url="https://charts.example/chart.png", error=None):
        self.url = url
        self.error = error
        self.calls = []

    def chart_url(self, labels, values, title=None):
        self.calls.append((list(labels), list(values)))
        if self.error:
            raise self.error
        return self.url


@pytest.fixture
def store():
    return MemoryExpenseStore().connect()


@pytest.fixture
def chart_service():
    return FakeChartService()
