"""
database.py — SQLite schema, seed data, and the data collaborator functions.

Creates the beds, species, cultivation_plans, plantings and irrigation_events
tables and exposes the lookups the planning engine consumes (get_bed,
list_active_plantings, get_cultivation_plan, get_species,
list_irrigation_events) plus the two writes that must stay consistent:
- create_planting re-validates bed capacity inside its write transaction
- apply_watering records a (possibly bulk) watering in one transaction

Uses WAL mode for concurrent read performance.
"""

import sqlite3
import os
import logging
from datetime import date, datetime

from flask import current_app, has_app_context

from bed_capacity import validate_capacity
from models import BED_MARGIN_M, Bed, CultivationPlan, IrrigationEvent, Planting, Species

logger = logging.getLogger(__name__)

DEFAULT_DB_PATH = os.path.join(os.path.dirname(os.path.abspath(__file__)), 'data', 'garden.db')

DEFAULT_SETTINGS = {
    'bed_margin_m': str(BED_MARGIN_M),
    'young_threshold_days': '14',
    'irrigation_window_days': '7',
}


class CapacityConflictError(Exception):
    """Raised when a planting no longer fits at write time."""

    def __init__(self, result):
        super().__init__(result.message or "Capacité de la planche dépassée")
        self.result = result


class UnknownPlantingError(LookupError):
    """Raised when a batch references plantings that do not exist."""

    def __init__(self, missing_ids):
        super().__init__(f"Cultures introuvables : {', '.join(str(i) for i in missing_ids)}")
        self.missing_ids = list(missing_ids)


def get_db_path():
    """Database path: app config DATABASE, then GARDEN_DB_PATH, then data/garden.db."""
    if has_app_context() and current_app.config.get('DATABASE'):
        return current_app.config['DATABASE']
    return os.environ.get('GARDEN_DB_PATH', DEFAULT_DB_PATH)


def get_db():
    """Get a database connection with WAL mode and foreign keys enabled."""
    db_path = get_db_path()
    os.makedirs(os.path.dirname(os.path.abspath(db_path)), exist_ok=True)
    conn = sqlite3.connect(db_path)
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA foreign_keys=ON")
    conn.row_factory = sqlite3.Row
    return conn


def init_db():
    """Create all tables and indexes if they don't exist."""
    conn = get_db()
    cursor = conn.cursor()

    cursor.execute("""
        CREATE TABLE IF NOT EXISTS settings (
            key TEXT PRIMARY KEY,
            value TEXT NOT NULL
        )
    """)

    cursor.execute("""
        CREATE TABLE IF NOT EXISTS beds (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            name TEXT UNIQUE NOT NULL,
            width_m REAL NOT NULL CHECK (width_m >= 0),
            length_m REAL NOT NULL CHECK (length_m >= 0),
            bed_group TEXT,
            irrigation_type TEXT
        )
    """)

    cursor.execute("""
        CREATE TABLE IF NOT EXISTS species (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            name TEXT UNIQUE NOT NULL,
            water_need_level INTEGER,
            irrigation_type TEXT,
            yield_kg_m2 REAL,
            seeds_per_plant REAL
        )
    """)

    cursor.execute("""
        CREATE TABLE IF NOT EXISTS cultivation_plans (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            species_id INTEGER REFERENCES species(id),
            name TEXT NOT NULL,
            sow_week INTEGER,
            transplant_week INTEGER,
            harvest_week INTEGER,
            harvest_duration_weeks INTEGER,
            nursery_duration_days INTEGER,
            total_duration_days INTEGER,
            row_count_default INTEGER,
            row_spacing_default_cm REAL,
            plant_spacing_default_cm REAL,
            min_row_spacing_cm REAL,
            max_week_shift INTEGER NOT NULL DEFAULT 4
        )
    """)

    cursor.execute("""
        CREATE TABLE IF NOT EXISTS plantings (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            bed_id INTEGER NOT NULL REFERENCES beds(id),
            species_id INTEGER REFERENCES species(id),
            cultivation_plan_id INTEGER REFERENCES cultivation_plans(id),
            row_count INTEGER NOT NULL CHECK (row_count >= 0),
            row_spacing_cm REAL NOT NULL CHECK (row_spacing_cm >= 0),
            plant_spacing_cm REAL,
            length_m REAL,
            sow_date TEXT,
            transplant_date TEXT,
            harvest_date TEXT,
            last_watered_at TEXT,
            finished_at TEXT,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        )
    """)

    cursor.execute("""
        CREATE INDEX IF NOT EXISTS idx_plantings_bed_active
        ON plantings(bed_id, finished_at)
    """)

    # Irrigation events are only appended and flipped to done, never deleted
    cursor.execute("""
        CREATE TABLE IF NOT EXISTS irrigation_events (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            planting_id INTEGER NOT NULL REFERENCES plantings(id),
            planned_date TEXT NOT NULL,
            actual_date TEXT,
            done BOOLEAN DEFAULT 0
        )
    """)

    cursor.execute("""
        CREATE INDEX IF NOT EXISTS idx_irrigation_events_planting_date
        ON irrigation_events(planting_id, planned_date)
    """)

    conn.commit()
    conn.close()


def seed_defaults():
    """Populate default data if tables are empty. Idempotent — skips if data exists."""
    conn = get_db()
    cursor = conn.cursor()

    # --- Settings ---
    for key, value in DEFAULT_SETTINGS.items():
        cursor.execute("INSERT OR IGNORE INTO settings (key, value) VALUES (?, ?)", (key, value))

    # --- Species ---
    existing = cursor.execute("SELECT COUNT(*) FROM species").fetchone()[0]
    if existing == 0:
        species = [
            # name, water need (1-5), irrigation, kg/m², seeds per plant
            ('Tomate', 4, 'Goutte-à-goutte', 6.0, 1),
            ('Laitue', 3, 'Aspersion', 3.0, 1),
            ('Carotte', 2, 'Aspersion', 4.0, 3),
            ('Courgette', 5, 'Goutte-à-goutte', 5.0, 1),
            ('Ail', 1, 'Manuel', 1.0, 1),
        ]
        cursor.executemany(
            """INSERT INTO species (name, water_need_level, irrigation_type, yield_kg_m2, seeds_per_plant)
               VALUES (?, ?, ?, ?, ?)""",
            species
        )

    # --- Cultivation plans ---
    existing = cursor.execute("SELECT COUNT(*) FROM cultivation_plans").fetchone()[0]
    if existing == 0:
        ids = {row['name']: row['id'] for row in cursor.execute("SELECT id, name FROM species")}
        plans = [
            # species, name, sow, transplant, harvest, harvest weeks, rows, row cm, plant cm, min row cm
            ('Tomate', 'Tomate plein champ', 10, 18, 28, 10, 2, 60, 50, 40),
            ('Laitue', 'Laitue printemps', 8, 13, 20, 3, 3, 30, 30, 20),
            ('Carotte', 'Carotte semis direct', 12, None, 26, 6, 4, 25, 5, 15),
            ('Courgette', 'Courgette été', 16, 20, 27, 8, 1, 100, 80, None),
            ('Ail', 'Ail automne', 42, None, 28, 2, 4, 25, 12, 20),
        ]
        for plan in plans:
            cursor.execute(
                """INSERT INTO cultivation_plans
                   (species_id, name, sow_week, transplant_week, harvest_week, harvest_duration_weeks,
                    row_count_default, row_spacing_default_cm, plant_spacing_default_cm, min_row_spacing_cm)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (ids[plan[0]],) + plan[1:]
            )

    # --- Beds ---
    existing = cursor.execute("SELECT COUNT(*) FROM beds").fetchone()[0]
    if existing == 0:
        beds = [
            ('P01', 0.8, 20.0, 'Îlot A', 'Goutte-à-goutte'),
            ('P02', 0.8, 20.0, 'Îlot A', 'Goutte-à-goutte'),
            ('P03', 1.2, 15.0, 'Îlot B', 'Aspersion'),
        ]
        cursor.executemany(
            "INSERT INTO beds (name, width_m, length_m, bed_group, irrigation_type) VALUES (?, ?, ?, ?, ?)",
            beds
        )

    conn.commit()
    conn.close()


# ========================================
# Row conversion
# ========================================

def _parse_date(value):
    return date.fromisoformat(value) if value else None


def _parse_datetime(value):
    return datetime.fromisoformat(value) if value else None


def _iso(value):
    return value.isoformat() if value is not None else None


def _row_to_bed(row):
    return Bed(
        id=row['id'],
        name=row['name'],
        width_m=row['width_m'],
        length_m=row['length_m'],
        group=row['bed_group'],
        irrigation_type=row['irrigation_type'],
    )


def _row_to_species(row):
    return Species(
        id=row['id'],
        name=row['name'],
        water_need_level=row['water_need_level'],
        irrigation_type=row['irrigation_type'],
        yield_kg_m2=row['yield_kg_m2'],
        seeds_per_plant=row['seeds_per_plant'],
    )


def _row_to_plan(row):
    return CultivationPlan(**{k: row[k] for k in row.keys()})


def _row_to_planting(row):
    return Planting(
        id=row['id'],
        bed_id=row['bed_id'],
        species_id=row['species_id'],
        cultivation_plan_id=row['cultivation_plan_id'],
        row_count=row['row_count'],
        row_spacing_cm=row['row_spacing_cm'],
        plant_spacing_cm=row['plant_spacing_cm'],
        length_m=row['length_m'],
        sow_date=_parse_date(row['sow_date']),
        transplant_date=_parse_date(row['transplant_date']),
        harvest_date=_parse_date(row['harvest_date']),
        last_watered_at=_parse_datetime(row['last_watered_at']),
        finished_at=_parse_date(row['finished_at']),
    )


def _row_to_event(row):
    return IrrigationEvent(
        id=row['id'],
        planting_id=row['planting_id'],
        planned_date=_parse_date(row['planned_date']),
        actual_date=_parse_date(row['actual_date']),
        done=bool(row['done']),
    )


# ========================================
# Settings
# ========================================

def get_setting(key, default=None):
    """Get a setting value by key."""
    conn = get_db()
    row = conn.execute("SELECT value FROM settings WHERE key = ?", (key,)).fetchone()
    conn.close()
    if row:
        return row['value']
    return default


def update_setting(key, value):
    """Insert or replace a setting value."""
    conn = get_db()
    conn.execute(
        "INSERT INTO settings (key, value) VALUES (?, ?) "
        "ON CONFLICT(key) DO UPDATE SET value = excluded.value",
        (key, str(value))
    )
    conn.commit()
    conn.close()


def get_float_setting(key):
    """Numeric setting, falling back to the built-in default on bad values."""
    raw = get_setting(key, DEFAULT_SETTINGS.get(key))
    try:
        return float(raw)
    except (TypeError, ValueError):
        logger.warning("Paramètre %s invalide (%r), valeur par défaut utilisée", key, raw)
        return float(DEFAULT_SETTINGS[key])


# ========================================
# Lookups
# ========================================

def get_beds():
    """Retrieve all beds."""
    conn = get_db()
    rows = conn.execute("SELECT * FROM beds ORDER BY name").fetchall()
    conn.close()
    return [_row_to_bed(r) for r in rows]


def get_bed(bed_id):
    """Retrieve a single bed by ID (None if missing)."""
    conn = get_db()
    row = conn.execute("SELECT * FROM beds WHERE id = ?", (bed_id,)).fetchone()
    conn.close()
    return _row_to_bed(row) if row else None


def get_species(species_id):
    conn = get_db()
    row = conn.execute("SELECT * FROM species WHERE id = ?", (species_id,)).fetchone()
    conn.close()
    return _row_to_species(row) if row else None


def get_cultivation_plan(plan_id):
    conn = get_db()
    row = conn.execute("SELECT * FROM cultivation_plans WHERE id = ?", (plan_id,)).fetchone()
    conn.close()
    return _row_to_plan(row) if row else None


def get_cultivation_plans():
    conn = get_db()
    rows = conn.execute("SELECT * FROM cultivation_plans ORDER BY name").fetchall()
    conn.close()
    return [_row_to_plan(r) for r in rows]


def get_planting(planting_id):
    conn = get_db()
    row = conn.execute("SELECT * FROM plantings WHERE id = ?", (planting_id,)).fetchone()
    conn.close()
    return _row_to_planting(row) if row else None


def list_active_plantings(bed_id=None):
    """Plantings not yet finished, for one bed or for all beds."""
    conn = get_db()
    if bed_id is not None:
        rows = conn.execute(
            "SELECT * FROM plantings WHERE bed_id = ? AND finished_at IS NULL ORDER BY id",
            (bed_id,)
        ).fetchall()
    else:
        rows = conn.execute(
            "SELECT * FROM plantings WHERE finished_at IS NULL ORDER BY bed_id, id"
        ).fetchall()
    conn.close()
    return [_row_to_planting(r) for r in rows]


def list_irrigation_events(planting_id=None, bed_id=None, start=None, end=None):
    """Irrigation events of a planting or of every planting on a bed.

    start/end (dates, inclusive) restrict planned_date.
    """
    query = """SELECT e.* FROM irrigation_events e
               JOIN plantings p ON e.planting_id = p.id
               WHERE 1 = 1"""
    params = []
    if planting_id is not None:
        query += " AND e.planting_id = ?"
        params.append(planting_id)
    if bed_id is not None:
        query += " AND p.bed_id = ?"
        params.append(bed_id)
    if start is not None:
        query += " AND e.planned_date >= ?"
        params.append(start.isoformat())
    if end is not None:
        query += " AND e.planned_date <= ?"
        params.append(end.isoformat())
    query += " ORDER BY e.planned_date, e.id"

    conn = get_db()
    rows = conn.execute(query, params).fetchall()
    conn.close()
    return [_row_to_event(r) for r in rows]


# ========================================
# Writes
# ========================================

def create_planting(planting, margin_m=None):
    """Insert a planting after re-validating the bed capacity.

    The check and the insert run in one IMMEDIATE transaction, so two
    concurrent creations on the same bed cannot both overflow it.

    Returns:
        The new planting id.

    Raises:
        CapacityConflictError: the planting no longer fits.
        LookupError: the bed does not exist.
    """
    if margin_m is None:
        margin_m = get_float_setting('bed_margin_m')

    conn = get_db()
    try:
        conn.execute("BEGIN IMMEDIATE")
        bed_row = conn.execute("SELECT * FROM beds WHERE id = ?", (planting.bed_id,)).fetchone()
        if not bed_row:
            raise LookupError(f"Bed {planting.bed_id} not found")
        existing = [
            _row_to_planting(r) for r in conn.execute(
                "SELECT * FROM plantings WHERE bed_id = ? AND finished_at IS NULL",
                (planting.bed_id,)
            ).fetchall()
        ]
        result = validate_capacity(_row_to_bed(bed_row), existing, planting, margin_m)
        if not result.possible:
            raise CapacityConflictError(result)

        cursor = conn.execute(
            """INSERT INTO plantings
               (bed_id, species_id, cultivation_plan_id, row_count, row_spacing_cm, plant_spacing_cm,
                length_m, sow_date, transplant_date, harvest_date, last_watered_at, finished_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                planting.bed_id, planting.species_id, planting.cultivation_plan_id,
                planting.row_count, planting.row_spacing_cm, planting.plant_spacing_cm,
                planting.length_m, _iso(planting.sow_date), _iso(planting.transplant_date),
                _iso(planting.harvest_date), _iso(planting.last_watered_at), _iso(planting.finished_at),
            )
        )
        conn.commit()
        return cursor.lastrowid
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def finish_planting(planting_id, finished_at=None):
    """Retire a planting; it stays in history but frees its bed width."""
    conn = get_db()
    try:
        cursor = conn.execute(
            "UPDATE plantings SET finished_at = ? WHERE id = ? AND finished_at IS NULL",
            (_iso(finished_at or date.today()), planting_id)
        )
        conn.commit()
        return cursor.rowcount > 0
    finally:
        conn.close()


def create_irrigation_events(events):
    """Append planned irrigation events in one transaction."""
    conn = get_db()
    try:
        conn.executemany(
            "INSERT INTO irrigation_events (planting_id, planned_date, actual_date, done) VALUES (?, ?, ?, ?)",
            [(e.planting_id, _iso(e.planned_date), _iso(e.actual_date), int(e.done)) for e in events]
        )
        conn.commit()
        return len(events)
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def apply_watering(change_set):
    """Write a WateringChangeSet atomically.

    Every planting of the set gets the new last_watered_at and every
    confirmed event is marked done, or nothing is written at all.

    Returns:
        Number of plantings updated.

    Raises:
        UnknownPlantingError: some planting ids do not exist (nothing written).
    """
    ids = list(change_set.planting_ids)
    placeholders = ', '.join('?' for _ in ids)
    conn = get_db()
    try:
        conn.execute("BEGIN IMMEDIATE")
        found = {
            row['id'] for row in conn.execute(
                f"SELECT id FROM plantings WHERE id IN ({placeholders})", ids
            ).fetchall()
        }
        missing = [i for i in ids if i not in found]
        if missing:
            raise UnknownPlantingError(missing)

        cursor = conn.execute(
            f"UPDATE plantings SET last_watered_at = ? WHERE id IN ({placeholders})",
            [change_set.watered_at.isoformat()] + ids
        )
        updated = cursor.rowcount
        for event in change_set.event_updates:
            conn.execute(
                "UPDATE irrigation_events SET done = 1, actual_date = ? WHERE id = ?",
                (_iso(event.actual_date), event.id)
            )
        conn.commit()
        return updated
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()
