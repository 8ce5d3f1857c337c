import datetime
import logging
import os
import traceback
import typing
import aiohttp

import discord
from discord.ext import commands
from dotenv import load_dotenv

from config import Config
from db.index import SimilarityIndex
from db.store import HashTableStore
from utils.artifacts import ArtifactWriter
from utils.fetch import ImageFetcher
from utils.hashing import PerceptualHasher
from utils.memory import MemoryMonitor


class DupeBot(commands.Bot):
    client: aiohttp.ClientSession
    config: Config
    fetcher: ImageFetcher
    store: HashTableStore
    _uptime: datetime.datetime = datetime.datetime.now()

    def __init__(self, prefix: str, ext_dir: str, config_dir: str = "./configs", *args: typing.Any, **kwargs: typing.Any) -> None:
        intents = discord.Intents.default()
        intents.message_content = True
        intents.members = True
        super().__init__(*args, **kwargs, command_prefix=commands.when_mentioned_or(prefix), intents=intents)
        self.logger = logging.getLogger(self.__class__.__name__)
        self.ext_dir = ext_dir
        self.config_dir = config_dir
        self.synced = False
        # channel id -> index of a tracked channel, shared by the tracker and hash command
        self.tables: dict[int, SimilarityIndex] = {}
        self.active_scans: set[int] = set()
        self.remove_command('help')

    async def _load_extensions(self) -> None:
        if os.getenv("MODE") == "DEV":
            await self.load_extension('jishaku')
        if not os.path.isdir(self.ext_dir):
            self.logger.error(f"Extension directory {self.ext_dir} does not exist.")
            return
        for filename in os.listdir(self.ext_dir):
            if filename.endswith(".py") and not filename.startswith("_"):
                try:
                    await self.load_extension(f"{self.ext_dir}.{filename[:-3]}")
                    self.logger.info(f"Loaded extension {filename[:-3]}")
                except commands.ExtensionError:
                    self.logger.error(f"Failed to load extension {filename[:-3]}\n{traceback.format_exc()}")

    async def on_error(self, event_method: str, *args: typing.Any, **kwargs: typing.Any) -> None:
        self.logger.error(f"An error occurred in {event_method}.\n{traceback.format_exc()}")

    async def on_ready(self) -> None:
        self.logger.info(f"Logged in as {self.user} ({self.user.id})")
        self.logger.info(f"Analysis operator: {self.config.operator}, version {self.config.version}")
        if self.config.tracked_channels:
            self.logger.info(f"Tracking channels: {', '.join(str(c) for c in sorted(self.config.tracked_channels))}")

    def index_options(self) -> dict:
        return {
            "match_mode": self.config.match_mode,
            "hamming_threshold": self.config.hamming_threshold,
            "pixel_threshold": self.config.pixel_threshold,
        }

    def new_index(self) -> SimilarityIndex:
        return SimilarityIndex(**self.index_options())

    def hasher(self) -> PerceptualHasher:
        return PerceptualHasher(self.fetcher, self.config.hash_method, self.config.keep_pixels)

    def memory_monitor(self) -> MemoryMonitor:
        return MemoryMonitor(
            self.config.memory_limit_mb,
            threshold=self.config.memory_threshold,
            policy=self.config.memory_policy,
            min_batch_size=self.config.min_batch_size,
        )

    def artifact_writer(self) -> ArtifactWriter | None:
        if not self.config.save_artifacts:
            return None
        return ArtifactWriter(self.fetcher, self.config.output_dir)

    async def setup_hook(self) -> None:
        self.config = Config(os.getenv("CONFIG_PATH", self.config_dir))
        self.client = aiohttp.ClientSession(headers={"User-Agent": f"DupeBot/{self.config.version}"})
        self.fetcher = ImageFetcher(self.client, self.config.max_attachment_bytes, self.config.fetch_timeout)
        self.store = HashTableStore(self.config.table_dir)
        for channel_id in self.config.tracked_channels:
            self.tables[channel_id] = self.store.load(channel_id, **self.index_options())
        await self._load_extensions()
        if not self.synced:
            await self.tree.sync()
            self.synced = not self.synced
            self.logger.info("Synced command tree")

    async def close(self) -> None:
        for channel_id, index in self.tables.items():
            await self.store.save_async(channel_id, index)
        await super().close()
        await self.client.close()

    def run(self, *args: typing.Any, **kwargs: typing.Any) -> None:
        load_dotenv()
        try:
            super().run(str(os.getenv("TOKEN")), *args, log_handler=None, **kwargs)
        except (discord.LoginFailure, KeyboardInterrupt):
            self.logger.info("Exiting...")
            exit()

    @property
    def user(self) -> discord.ClientUser:
        assert super().user, "Bot is not ready yet"
        return typing.cast(discord.ClientUser, super().user)

    @property
    def uptime(self) -> datetime.timedelta:
        return datetime.datetime.now() - self._uptime


def setup_logging(log_dir: str = "logs") -> None:
    os.makedirs(log_dir, exist_ok=True)
    log_file = os.path.join(log_dir, f"bot_log_{datetime.date.today().isoformat()}.log")
    formatter = logging.Formatter("[%(asctime)s] %(levelname)s %(name)s: %(message)s")
    logging.basicConfig(level=logging.INFO, format="[%(asctime)s] %(levelname)s: %(message)s")
    file_handler = logging.FileHandler(log_file, encoding="utf-8")
    file_handler.setFormatter(formatter)
    logging.getLogger().addHandler(file_handler)


def main() -> None:
    setup_logging()
    bot = DupeBot(prefix="!", ext_dir="cogs")
    bot.run()


if __name__ == "__main__":
    main()
