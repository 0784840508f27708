import pytest

from blockfill import cli
from blockfill.config import KB, TRIM_BYTES, Mode, RunConfig
from blockfill.engine import StressEngine
from blockfill.errors import TransportExhausted

from conftest import BUNDLE_KEY, RPC_URL, TX_KEY, FakeRelay, FakeRpc


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    # setenv first so anything load_dotenv writes is undone at teardown
    for name in ("ETH_RPC_URL", "SIGNER", "BUNDLE", "RELAY_URL"):
        monkeypatch.setenv(name, "")
        monkeypatch.delenv(name)


class StubReport:
    def __init__(self, succeeded=True, cancelled=False):
        self.succeeded = succeeded
        self.cancelled = cancelled

    def summary(self):
        return ["mode: stub"]


class StubEngine:
    def __init__(self, config, report=None, exc=None):
        self.config = config
        self.report = report or StubReport()
        self.exc = exc

    def run(self, cancel=None):
        if self.exc is not None:
            raise self.exc
        return self.report


def parse(argv):
    return cli.config_from_args(cli.build_parser().parse_args(argv))


def test_defaults_to_bundle_mode():
    config = parse(["-r", RPC_URL, "-t", TX_KEY, "-b", BUNDLE_KEY])

    assert config.mode is Mode.BUNDLE
    assert config.chunk_size == 128 * KB - TRIM_BYTES
    assert config.fill_pct == 80
    assert config.blocks_requested == 1


def test_mem_pool_flag_and_sizes():
    config = parse(["--mem-pool", "-c", "64", "-f", "12.5", "--mempool-txs", "10", "-r", RPC_URL, "-t", TX_KEY])

    assert config.mode is Mode.MEMPOOL
    assert config.chunk_size == 64 * KB - TRIM_BYTES
    assert config.fill_pct == 12.5
    assert config.tx_count == 10
    assert config.bundle_signer_key is None


def test_mode_and_mem_pool_are_exclusive():
    with pytest.raises(SystemExit):
        cli.build_parser().parse_args(["--mode", "bundle", "--mem-pool"])


def test_keys_and_urls_come_from_environment(monkeypatch):
    monkeypatch.setenv("ETH_RPC_URL", RPC_URL)
    monkeypatch.setenv("SIGNER", TX_KEY)
    monkeypatch.setenv("BUNDLE", BUNDLE_KEY)
    monkeypatch.setenv("RELAY_URL", "https://relay.example/")

    config = parse([])

    assert config.rpc_url == RPC_URL
    assert config.tx_signer_key == TX_KEY
    assert config.bundle_signer_key == BUNDLE_KEY
    assert config.relay_url == "https://relay.example/"


@pytest.mark.parametrize(
    "argv",
    [
        ["--mem-pool", "-t", TX_KEY],  # no RPC URL
        ["--mem-pool", "-r", RPC_URL, "-t", TX_KEY, "-c", "129"],
        ["--mem-pool", "-r", RPC_URL, "-t", TX_KEY, "-c", "0"],
        ["-r", RPC_URL, "-t", TX_KEY],  # bundle mode without bundle signer
        ["-r", RPC_URL, "-t", TX_KEY, "-b", BUNDLE_KEY, "-f", "101"],
    ],
)
def test_config_problems_exit_2(argv):
    assert cli.main(argv) == cli.EXIT_CONFIG


def test_bad_key_exits_3():
    assert cli.main(["--mem-pool", "-r", RPC_URL, "-t", "0x1234"]) == cli.EXIT_SIGNING


def test_exhausted_transport_exits_4():
    exc = TransportExhausted("chain-head failed after 5 attempts", stage="poll-head")

    code = cli.main(["-r", RPC_URL, "-t", TX_KEY, "-b", BUNDLE_KEY], engine_factory=lambda c: StubEngine(c, exc=exc))

    assert code == cli.EXIT_TRANSPORT


def test_unsuccessful_run_exits_1():
    code = cli.main(
        ["-r", RPC_URL, "-t", TX_KEY, "-b", BUNDLE_KEY],
        engine_factory=lambda c: StubEngine(c, report=StubReport(succeeded=False)),
    )

    assert code == cli.EXIT_FAILED


def test_cancelled_run_exits_130():
    code = cli.main(
        ["-r", RPC_URL, "-t", TX_KEY, "-b", BUNDLE_KEY],
        engine_factory=lambda c: StubEngine(c, report=StubReport(succeeded=False, cancelled=True)),
    )

    assert code == cli.EXIT_CANCELLED


def test_mempool_run_end_to_end(capsys):
    rpc = FakeRpc()

    code = cli.main(
        ["--mem-pool", "-c", "1", "--mempool-txs", "4", "-r", RPC_URL, "-t", TX_KEY],
        engine_factory=lambda c: StressEngine(c, rpc=rpc),
    )

    assert code == cli.EXIT_OK
    assert len(rpc.sent) == 4
    assert len(rpc.sent[0]) > KB - TRIM_BYTES
    assert "transactions broadcast: 4" in capsys.readouterr().out


def test_bundle_run_end_to_end(capsys):
    rpc = FakeRpc()
    relay = FakeRelay(rpc, ["miss", "land"])

    code = cli.main(
        ["-r", RPC_URL, "-t", TX_KEY, "-b", BUNDLE_KEY, "-c", "1734"],
        engine_factory=lambda c: StressEngine(c, rpc=rpc, relay=relay, sleep=lambda s: None),
    )

    assert code == cli.EXIT_OK
    assert "blocks landed: 1/1" in capsys.readouterr().out


def test_run_config_from_env_file(tmp_path):
    env = tmp_path / ".env"
    env.write_text(f"ETH_RPC_URL={RPC_URL}\nSIGNER={TX_KEY}\nBUNDLE={BUNDLE_KEY}\n")

    config = RunConfig.from_env(Mode.BUNDLE, dotenv_path=str(env), blocks_requested=3, gas_price=None)

    assert config.rpc_url == RPC_URL
    assert config.tx_signer_key == TX_KEY
    assert config.bundle_signer_key == BUNDLE_KEY
    assert config.blocks_requested == 3
    config.validate()


def test_flags_override_environment(monkeypatch):
    monkeypatch.setenv("ETH_RPC_URL", "http://env-node:8545")
    monkeypatch.setenv("SIGNER", TX_KEY)

    config = parse(["--mem-pool", "-r", RPC_URL])

    assert config.rpc_url == RPC_URL
    assert config.tx_signer_key == TX_KEY
