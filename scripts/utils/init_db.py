"""
Script para inicializar la base de datos SQLite de SupportDesk.
Aplica el schema sobre la ruta configurada en DATABASE_PATH.
"""

import sqlite3
import sys
from pathlib import Path

# El script está en scripts/utils/, el proyecto está 2 niveles arriba
project_root = Path(__file__).resolve().parent.parent.parent
sys.path.insert(0, str(project_root))

from agent.db_service import DBService
from api.config import get_settings


def init_database(reset: bool = False):
    """Inicializa la base de datos con el schema (idempotente)."""
    db_path = get_settings().db_full_path

    # Crear directorio si no existe
    db_path.parent.mkdir(parents=True, exist_ok=True)

    if db_path.exists() and reset:
        print(f"⚠️  La base de datos ya existe en {db_path}")
        response = input("¿Deseas recrearla? Esto borrará todos los datos (y/n): ")
        if response.lower() != "y":
            print("❌ Operación cancelada")
            return
        db_path.unlink()

    print(f"📦 Aplicando schema en {db_path}")
    DBService(db_path).init_schema()

    conn = sqlite3.connect(db_path)
    try:
        tables = conn.execute(
            "SELECT name FROM sqlite_master WHERE type='table' "
            "AND name NOT LIKE 'sqlite_%'"
        ).fetchall()
        print(f"\n✅ Base de datos inicializada correctamente")
        for (table_name,) in tables:
            count = conn.execute(f"SELECT COUNT(*) FROM {table_name}").fetchone()[0]
            print(f"   - {table_name}: {count} registros")
    finally:
        conn.close()

    print(f"\n🎉 Inicialización completada. DB: {db_path}")


if __name__ == "__main__":
    init_database(reset="--reset" in sys.argv)
