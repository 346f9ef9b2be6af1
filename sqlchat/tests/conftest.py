"""
测试公共夹具
"""
import sqlite3

import pytest

from sqlchat.database import Database
from sqlchat.services.dto import ColumnSchema, ConnectionDetails, TableSchema
from sqlchat.services.encryption_service import EncryptionService

PATIENTS = [
    (1, "John", "Smith", "1980-01-15", "Male"),
    (2, "Jane", "Doe", "1985-06-30", "Female"),
    (3, "Robert", "Brown", "1990-11-02", "Male"),
    (4, "Emily", "Clark", "1975-03-21", "Female"),
]


@pytest.fixture
def patients_db(tmp_path):
    """创建4个病人的SQLite测试库（2男2女，男性先出现）"""
    path = tmp_path / "clinic.db"
    conn = sqlite3.connect(str(path))
    cursor = conn.cursor()
    cursor.execute("""
        CREATE TABLE patients (
            id INTEGER PRIMARY KEY,
            first_name TEXT NOT NULL,
            last_name TEXT NOT NULL,
            date_of_birth DATE,
            gender TEXT
        )
    """)
    cursor.execute("""
        CREATE TABLE appointments (
            id INTEGER PRIMARY KEY,
            patient_id INTEGER,
            appointment_date DATE,
            reason TEXT
        )
    """)
    cursor.executemany("INSERT INTO patients VALUES (?, ?, ?, ?, ?)", PATIENTS)
    cursor.executemany(
        "INSERT INTO appointments VALUES (?, ?, ?, ?)",
        [(1, 1, "2030-01-10", "Checkup"), (2, 2, "2030-02-11", "Follow-up")],
    )
    conn.commit()
    conn.close()
    return str(path)


@pytest.fixture
def patients_details(patients_db):
    return ConnectionDetails(id="conn-clinic", name="Clinic", type="SQLite", file_path=patients_db)


@pytest.fixture
def patients_schema():
    return [
        TableSchema(
            table_name="patients",
            columns=[
                ColumnSchema(name="id", type="INTEGER"),
                ColumnSchema(name="first_name", type="TEXT"),
                ColumnSchema(name="last_name", type="TEXT"),
                ColumnSchema(name="date_of_birth", type="DATE"),
                ColumnSchema(name="gender", type="TEXT"),
            ],
        )
    ]


@pytest.fixture
def config_db():
    """内存中的配置数据库"""
    database = Database("sqlite://")
    database.create_tables()
    yield database
    database.drop_tables()
    database.engine.dispose()


@pytest.fixture
def encryption():
    return EncryptionService(key=EncryptionService.generate_key().encode())
