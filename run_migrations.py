#!/usr/bin/env python3
"""
Скрипт для выполнения миграций базы данных.
Использование: python3 run_migrations.py [--local]
"""
import subprocess
import sys
from pathlib import Path

DOCKER_CMD = ["docker-compose", "exec", "-w", "/src/studiopass", "studiopass", "alembic", "upgrade", "head"]
LOCAL_CMD = ["alembic", "upgrade", "head"]


def run_migrations(local: bool = False):
    """Выполняет миграции Alembic через Docker Compose или локально из studiopass/"""
    project_dir = Path(__file__).parent
    if local:
        cmd, cwd = LOCAL_CMD, project_dir / "studiopass"
    else:
        cmd, cwd = DOCKER_CMD, project_dir

    print("🔄 Выполняю миграции базы данных...")

    try:
        result = subprocess.run(cmd, cwd=cwd, check=True, capture_output=True, text=True)
    except subprocess.CalledProcessError as e:
        print("❌ Ошибка при выполнении миграций:")
        if e.stderr:
            print(e.stderr)
        if e.stdout:
            print(e.stdout)
        sys.exit(1)
    except FileNotFoundError:
        print(f"❌ Команда {cmd[0]} не найдена.")
        print("\nАльтернативный способ:")
        print("   cd studiopass && alembic upgrade head")
        sys.exit(1)

    print("✅ Миграции успешно выполнены!")
    if result.stdout:
        print(result.stdout)


if __name__ == "__main__":
    run_migrations(local="--local" in sys.argv[1:])
