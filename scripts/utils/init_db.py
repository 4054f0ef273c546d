"""
Inicializa la base de datos SQLite del orquestador con schema y seed.

Uso:
    python scripts/utils/init_db.py [--force] [--no-seed]
"""

import argparse
import sqlite3
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
DEFAULT_DB_PATH = PROJECT_ROOT / "database" / "sqlite" / "orchestrator.db"
SCHEMA_PATH = PROJECT_ROOT / "database" / "schema" / "schema.sql"
SEED_PATH = PROJECT_ROOT / "database" / "seeds" / "seed.sql"


def init_database(db_path: Path = DEFAULT_DB_PATH, seed: bool = True) -> list:
    """
    Crea las tablas y (opcionalmente) inserta los datos de seed.

    Returns:
        Lista de (tabla, cantidad de registros)
    """
    db_path = Path(db_path)
    db_path.parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(db_path)
    try:
        conn.executescript(SCHEMA_PATH.read_text(encoding="utf-8"))
        if seed:
            conn.executescript(SEED_PATH.read_text(encoding="utf-8"))
        conn.commit()

        tables = [
            row[0]
            for row in conn.execute(
                "SELECT name FROM sqlite_master WHERE type='table' "
                "AND name NOT LIKE 'sqlite_%' ORDER BY name"
            )
        ]
        return [
            (table, conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0])
            for table in tables
        ]
    except sqlite3.Error:
        conn.rollback()
        raise
    finally:
        conn.close()


def main():
    parser = argparse.ArgumentParser(description="Inicializa orchestrator.db")
    parser.add_argument("--db", type=Path, default=DEFAULT_DB_PATH)
    parser.add_argument(
        "--force", action="store_true", help="Borra la base existente sin preguntar"
    )
    parser.add_argument("--no-seed", action="store_true", help="Solo crea el schema")
    args = parser.parse_args()

    if args.db.exists():
        if not args.force:
            response = input(
                f"⚠️  {args.db} ya existe. ¿Recrearla? Esto borra todos los datos (y/n): "
            )
            if response.lower() != "y":
                print("❌ Operación cancelada")
                return
        args.db.unlink()

    print(f"📦 Creando base de datos en {args.db}")
    counts = init_database(args.db, seed=not args.no_seed)
    print("✅ Base de datos inicializada")
    for table, count in counts:
        print(f"   - {table}: {count} registros")


if __name__ == "__main__":
    main()
