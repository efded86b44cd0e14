import pytest

from chdriver.batch import Batch, split_insert
from chdriver.block import Block, Column
from chdriver.errors import BatchAlreadySentError, ClickHouseError, OpError


class FakeConn:
    def __init__(self, fail=None):
        self.sent = []
        self.processed = []
        self.fail = fail

    def send_data(self, block, name):
        self.sent.append((block, name))

    def process(self, on):
        if self.fail is not None:
            raise self.fail
        self.processed.append(on)


def make_batch(conn=None):
    released = []
    block = Block([Column("id", "UInt64"), Column("name", "Nullable(String)")])
    batch = Batch(conn or FakeConn(), block, released.append, on_process="on")
    return batch, released


def test_split_insert():
    assert split_insert("INSERT INTO t VALUES (1, 2)") == "INSERT INTO t VALUES"
    assert split_insert("INSERT INTO t") == "INSERT INTO t VALUES"
    assert split_insert("INSERT INTO t values") == "INSERT INTO t values"
    assert split_insert("insert into t\tvalues(1)") == "insert into t VALUES"


def test_send_writes_block_then_terminator():
    conn = FakeConn()
    batch, released = make_batch(conn)
    batch.append(1, "a")
    batch.append(2, None)
    batch.send()
    assert conn.sent[0][0].row(1) == (2, None)
    assert conn.sent[1][0].rows() == 0
    assert [name for _, name in conn.sent] == ["", ""]
    assert conn.processed == ["on"]
    assert released == [None]
    assert batch.sent is True


def test_empty_batch_sends_only_terminator():
    conn = FakeConn()
    batch, _ = make_batch(conn)
    batch.send()
    assert len(conn.sent) == 1
    assert conn.sent[0][0].columns == []


def test_send_twice():
    batch, _ = make_batch()
    batch.send()
    with pytest.raises(BatchAlreadySentError, match="batch has already been sent"):
        batch.send()


def test_append_after_send():
    batch, _ = make_batch()
    batch.send()
    with pytest.raises(BatchAlreadySentError):
        batch.append(1, "a")


def test_server_failure_releases_with_error():
    failure = ClickHouseError("server said no")
    batch, released = make_batch(FakeConn(fail=failure))
    with pytest.raises(ClickHouseError):
        batch.send()
    assert released == [failure]
    assert batch.sent is False


def test_bad_append_releases_connection():
    batch, released = make_batch()
    with pytest.raises(OpError) as info:
        batch.append(None, "a")
    assert released == [info.value]
    assert batch.block.rows() == 0


def test_append_dict_orders_values_by_column():
    batch, _ = make_batch()
    batch.append_dict({"name": "x", "id": 4})
    assert batch.block.row(0) == (4, "x")


def test_append_dict_missing_column():
    batch, _ = make_batch()
    with pytest.raises(OpError) as info:
        batch.append_dict({"id": 4})
    assert info.value.op == "AppendStruct"


def test_column_append():
    batch, _ = make_batch()
    batch.column(0).append([1, 2])
    batch.column(1).append(["a", None])
    assert batch.block.rows() == 2
    assert batch.block.row(1) == (2, None)


def test_invalid_column_index():
    batch, released = make_batch()
    column = batch.column(5)
    assert released == [None]
    with pytest.raises(OpError, match="invalid column index 5"):
        column.append([1])


def test_failed_column_append_makes_send_fail():
    batch, released = make_batch()
    with pytest.raises(ClickHouseError) as info:
        batch.column(0).append([1, None])
    assert released == [info.value]
    with pytest.raises(ClickHouseError) as again:
        batch.send()
    assert again.value is info.value


def test_abort_releases_and_blocks_further_use():
    batch, released = make_batch()
    batch.abort()
    assert len(released) == 1
    assert isinstance(released[0], ClickHouseError)
    assert batch.sent is True
    with pytest.raises(BatchAlreadySentError):
        batch.abort()
    with pytest.raises(BatchAlreadySentError):
        batch.append(1, "a")