import asyncio
import json
import logging
from typing import Awaitable, Callable, List, Optional

import aiosqlite

from tickerbar.core.models import AlertKind, AlertRule, AppConfig
from tickerbar.core.symbols import canonical, validate_new_symbol

logger = logging.getLogger(__name__)

CREATE_TABLES_SQL = """
CREATE TABLE IF NOT EXISTS settings (
key TEXT PRIMARY KEY,
value TEXT
);
CREATE TABLE IF NOT EXISTS symbols (
symbol TEXT PRIMARY KEY,
position INTEGER
);
CREATE TABLE IF NOT EXISTS alert_rules (
id TEXT PRIMARY KEY,
symbol TEXT,
kind TEXT,
threshold REAL,
triggered INTEGER,
position INTEGER
);
"""

# AppConfig fields stored as JSON values in `settings`
SETTING_FIELDS = (
    "refresh_interval",
    "display_format",
    "show_change_percent",
    "custom_format",
    "color_mode",
    "rotate_stocks",
)


class ConfigStore:
    """Owns persisted user configuration. Nothing else touches the database.

    Writes are committed before the call returns so a fired alert survives an
    abrupt exit.
    """

    def __init__(self, db_path: str = "tickerbar.db", defaults: Optional[AppConfig] = None) -> None:
        self.db_path = db_path
        self.defaults = defaults or AppConfig()
        self._conn: Optional[aiosqlite.Connection] = None
        self._subscribers: List[Callable[[AppConfig], Awaitable[None]]] = []
        self._sub_lock = asyncio.Lock()
        self._conn_lock = asyncio.Lock()

    async def init(self):
        """Open the connection, create the schema and seed defaults on first run."""
        async with self._conn_lock:
            if self._conn:
                return
            self._conn = await aiosqlite.connect(self.db_path)
            await self._conn.executescript(CREATE_TABLES_SQL)
            await self._conn.commit()
            async with self._conn.execute("SELECT COUNT(*) FROM settings") as cur:
                (count,) = await cur.fetchone()
        if count == 0:
            logger.info("seeding %s with default configuration", self.db_path)
            await self.save(self.defaults, notify=False)

    async def close(self) -> None:
        async with self._conn_lock:
            if self._conn:
                await self._conn.close()
                self._conn = None

    def _require_conn(self) -> aiosqlite.Connection:
        if not self._conn:
            raise RuntimeError("ConfigStore not initialized. Call .init() before use.")
        return self._conn

    async def load(self) -> AppConfig:
        conn = self._require_conn()
        data = {}
        async with conn.execute("SELECT key, value FROM settings") as cur:
            async for key, value in cur:
                if key in SETTING_FIELDS:
                    data[key] = json.loads(value)

        async with conn.execute("SELECT symbol FROM symbols ORDER BY position") as cur:
            data["symbols"] = [row[0] async for row in cur]

        rules = {}
        sql = "SELECT id, symbol, kind, threshold, triggered FROM alert_rules ORDER BY symbol, position"
        async with conn.execute(sql) as cur:
            async for rule_id, symbol, kind, threshold, triggered in cur:
                rules.setdefault(symbol, []).append(
                    AlertRule(id=rule_id, kind=AlertKind(kind), threshold=threshold, triggered=bool(triggered))
                )
        data["alert_rules"] = rules
        return AppConfig.model_validate(data)

    async def save(self, config: AppConfig, notify: bool = True) -> None:
        """Replace the whole stored configuration in one transaction.

        Rule `triggered` flags in *config* are ignored: a rule already stored
        keeps its stored flag and a new rule starts armed. Only save_rule()
        and reset_alerts() change them.
        """
        conn = self._require_conn()
        dumped = config.model_dump(mode="json")
        try:
            async with conn.execute("SELECT id, triggered FROM alert_rules") as cur:
                fired = {rule_id: bool(triggered) async for rule_id, triggered in cur}
            await conn.execute("DELETE FROM settings")
            await conn.execute("DELETE FROM symbols")
            await conn.execute("DELETE FROM alert_rules")
            await conn.executemany(
                "INSERT INTO settings (key, value) VALUES (?, ?)",
                [(key, json.dumps(dumped[key])) for key in SETTING_FIELDS],
            )
            await conn.executemany(
                "INSERT INTO symbols (symbol, position) VALUES (?, ?)",
                [(symbol, i) for i, symbol in enumerate(config.symbols)],
            )
            await conn.executemany(
                "INSERT INTO alert_rules (id, symbol, kind, threshold, triggered, position) VALUES (?, ?, ?, ?, ?, ?)",
                [
                    (rule.id, symbol, rule.kind.value, rule.threshold, int(fired.get(rule.id, False)), i)
                    for symbol, rules in config.alert_rules.items()
                    for i, rule in enumerate(rules)
                ],
            )
            await conn.commit()
        except Exception:
            await conn.rollback()
            raise
        if notify:
            await self._notify_subscribers(await self.load())

    async def add_symbol(self, raw: str) -> str:
        """Validate and append a symbol. Raises SymbolValidationError."""
        config = await self.load()
        symbol = validate_new_symbol(raw, config.symbols)
        conn = self._require_conn()
        await conn.execute(
            "INSERT INTO symbols (symbol, position) SELECT ?, COALESCE(MAX(position), -1) + 1 FROM symbols",
            (symbol,),
        )
        await conn.commit()
        await self._changed()
        return symbol

    async def remove_symbol(self, raw: str) -> bool:
        """Remove a symbol and its alert rules. Returns False if it was not listed."""
        symbol = canonical(raw)
        conn = self._require_conn()
        cur = await conn.execute("DELETE FROM symbols WHERE symbol = ?", (symbol,))
        removed = cur.rowcount > 0
        await conn.execute("DELETE FROM alert_rules WHERE symbol = ?", (symbol,))
        await conn.commit()
        if removed:
            await self._changed()
        return removed

    async def add_rule(self, raw_symbol: str, kind: AlertKind, threshold: float) -> AlertRule:
        symbol = canonical(raw_symbol)
        conn = self._require_conn()
        rule = AlertRule(kind=kind, threshold=threshold)
        async with conn.execute("SELECT COALESCE(MAX(position), -1) + 1 FROM alert_rules WHERE symbol = ?", (symbol,)) as cur:
            (position,) = await cur.fetchone()
        await conn.execute(
            "INSERT INTO alert_rules (id, symbol, kind, threshold, triggered, position) VALUES (?, ?, ?, ?, ?, ?)",
            (rule.id, symbol, rule.kind.value, rule.threshold, 0, position),
        )
        await conn.commit()
        await self._changed()
        return rule

    async def remove_rule(self, rule_id: str) -> bool:
        conn = self._require_conn()
        cur = await conn.execute("DELETE FROM alert_rules WHERE id = ?", (rule_id,))
        await conn.commit()
        if cur.rowcount > 0:
            await self._changed()
            return True
        return False

    async def save_rule(self, raw_symbol: str, rule: AlertRule) -> None:
        """Persist one rule's current state immediately (insert if unknown)."""
        symbol = canonical(raw_symbol)
        conn = self._require_conn()
        cur = await conn.execute(
            "UPDATE alert_rules SET kind = ?, threshold = ?, triggered = ? WHERE id = ? AND symbol = ?",
            (rule.kind.value, rule.threshold, int(rule.triggered), rule.id, symbol),
        )
        if cur.rowcount == 0:
            async with conn.execute("SELECT COALESCE(MAX(position), -1) + 1 FROM alert_rules WHERE symbol = ?", (symbol,)) as count_cur:
                (position,) = await count_cur.fetchone()
            await conn.execute(
                "INSERT INTO alert_rules (id, symbol, kind, threshold, triggered, position) VALUES (?, ?, ?, ?, ?, ?)",
                (rule.id, symbol, rule.kind.value, rule.threshold, int(rule.triggered), position),
            )
        await conn.commit()

    async def reset_alerts(self) -> int:
        """Clear every triggered flag. Returns the number of rules re-armed."""
        conn = self._require_conn()
        cur = await conn.execute("UPDATE alert_rules SET triggered = 0 WHERE triggered = 1")
        await conn.commit()
        return cur.rowcount

    async def _changed(self) -> None:
        if self._subscribers:
            await self._notify_subscribers(await self.load())

    async def _notify_subscribers(self, config: AppConfig) -> None:
        async with self._sub_lock:
            subs = list(self._subscribers)
        for cb in subs:
            try:
                await cb(config)
            except Exception:
                logger.exception("config subscriber failed")

    async def subscribe_changes(self, callback: Callable[[AppConfig], Awaitable[None]]) -> None:
        """Register an async callback called with the new AppConfig after each write.

        save_rule() and reset_alerts() do not notify; rule state belongs to
        AlertEvaluator.
        """
        async with self._sub_lock:
            self._subscribers.append(callback)

    async def unsubscribe_changes(self, callback: Callable[[AppConfig], Awaitable[None]]) -> None:
        async with self._sub_lock:
            try:
                self._subscribers.remove(callback)
            except ValueError:
                pass


async def create_and_init(db_path: str = "tickerbar.db", defaults: Optional[AppConfig] = None) -> ConfigStore:
    store = ConfigStore(db_path=db_path, defaults=defaults)
    await store.init()
    return store
