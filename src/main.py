"""
Main entry point for the content store service.
"""
import argparse
import asyncio
import logging
import os

from serde import serde
from serde.json import from_json, to_json
import uvicorn

from content_store.cid import HashCode
from content_store.stats import StatsCollector
from content_store.store import ContentStore
from networking.api_server import create_app

logger = logging.getLogger("main")

HASHES = {
    "sha2-256": HashCode.SHA2_256,
    "blake2b-256": HashCode.BLAKE2B_256,
}


@serde
class Config:
    basepath: str = "ipfs-blockstore"
    host: str = "0.0.0.0"
    port: int = 5001
    max_chunk_size: int = 256 * 1024
    max_links: int = 174
    hash: str = "sha2-256"
    frontend_url: str = "http://localhost:3000"
    max_raw_body: int = 50 * 1024 * 1024
    log_level: str = "INFO"

    def validate(self):
        if self.max_chunk_size <= 0:
            raise ValueError("max_chunk_size must be positive")
        if self.max_links < 2:
            raise ValueError("max_links must be at least 2")
        if self.hash not in HASHES:
            raise ValueError(f"hash must be one of {sorted(HASHES)}")
        if not 0 < self.port < 65536:
            raise ValueError("port out of range")
        if self.max_raw_body <= 0:
            raise ValueError("max_raw_body must be positive")


def load_config(path: str, env: dict[str, str] | None = None) -> Config:
    """
    Read the config file, writing the defaults out if there is none yet.

    FRONTEND_URL, PORT and BLOCKSTORE_PATH in the environment win over the file.
    """
    env = os.environ if env is None else env
    try:
        with open(path, "r") as f:
            config = from_json(Config, f.read())
    except FileNotFoundError:
        config = Config()
        with open(path, "w") as f:
            f.write(to_json(config))
    if "FRONTEND_URL" in env:
        config.frontend_url = env["FRONTEND_URL"]
    if "PORT" in env:
        config.port = int(env["PORT"])
    if "BLOCKSTORE_PATH" in env:
        config.basepath = env["BLOCKSTORE_PATH"]
    config.validate()
    return config


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(prog="content-store", description="Content-addressed blob store over HTTP")
    p.add_argument("config", nargs="?", default="config.json", help="Path to JSON config file")
    return p.parse_args(argv)


async def main() -> None:
    args = parse_args()
    config = load_config(args.config)
    logging.basicConfig(level=getattr(logging, config.log_level.upper(), logging.INFO),
                        format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    logger.info("Initializing blockstore at: %s", os.path.abspath(config.basepath))
    stats = StatsCollector()
    store = ContentStore(config.basepath, config.max_chunk_size, config.max_links, HASHES[config.hash], stats)
    app = create_app(store, stats, config.frontend_url, config.max_raw_body)

    uconfig = uvicorn.Config(app=app, host=config.host, port=config.port, log_level=config.log_level.lower())
    server = uvicorn.Server(config=uconfig)
    logger.info("Content store running at http://%s:%d", config.host, config.port)
    async with asyncio.TaskGroup() as tg:
        tg.create_task(server.serve())


def run():
    asyncio.run(main())


if __name__ == "__main__":
    run()
