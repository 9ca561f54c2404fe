"""
Database Manager Module - QR Attendance API
Author: QR Attendance Team
Date: October 2026

This module handles all database operations for the attendance API.
It manages SQLite connections, schema creation, parameterised queries and
transactions for users, organizations, QR sessions, attendance records,
reward claims, notifications and system settings.

Features:
- SQLite database connection management (one connection per thread)
- Table schema creation and default data
- Query / update helpers returning plain dictionaries
- Transaction support with automatic rollback
- System settings storage
"""

import sqlite3
import logging
from contextlib import contextmanager
import threading
from werkzeug.security import generate_password_hash
import os


SCHEMA = [
    # Users (admins, members, students)
    """
    CREATE TABLE IF NOT EXISTS users (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        email VARCHAR(120) UNIQUE NOT NULL,
        password_hash VARCHAR(255) NOT NULL,
        full_name VARCHAR(100) NOT NULL,
        phone VARCHAR(20) UNIQUE,
        role VARCHAR(20) DEFAULT 'student',
        department VARCHAR(100),
        student_id VARCHAR(50),
        course VARCHAR(100),
        semester INTEGER,
        points INTEGER DEFAULT 0,
        experience INTEGER DEFAULT 0,
        is_active BOOLEAN DEFAULT 1,
        last_login TIMESTAMP,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
    """,
    # Organizations with their attendance settings
    """
    CREATE TABLE IF NOT EXISTS organizations (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name VARCHAR(150) NOT NULL,
        code VARCHAR(30) UNIQUE NOT NULL,
        description TEXT,
        location_name VARCHAR(150),
        location_latitude REAL,
        location_longitude REAL,
        location_radius REAL DEFAULT 100,
        qr_validity_minutes INTEGER DEFAULT 15,
        max_scans INTEGER DEFAULT 0,
        allow_multiple_scans BOOLEAN DEFAULT 0,
        require_location BOOLEAN DEFAULT 0,
        late_threshold_minutes INTEGER DEFAULT 15,
        created_by INTEGER,
        is_active BOOLEAN DEFAULT 1,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        FOREIGN KEY (created_by) REFERENCES users(id)
    )
    """,
    # Organization membership with per-organization role
    """
    CREATE TABLE IF NOT EXISTS organization_members (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        organization_id INTEGER NOT NULL,
        user_id INTEGER NOT NULL,
        role VARCHAR(20) DEFAULT 'member',
        joined_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        FOREIGN KEY (organization_id) REFERENCES organizations(id),
        FOREIGN KEY (user_id) REFERENCES users(id),
        UNIQUE(organization_id, user_id)
    )
    """,
    # Time-boxed QR sessions
    """
    CREATE TABLE IF NOT EXISTS qr_codes (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        public_id VARCHAR(64) UNIQUE NOT NULL,
        data VARCHAR(64) NOT NULL,
        organization_id INTEGER NOT NULL,
        created_by INTEGER NOT NULL,
        type VARCHAR(20) DEFAULT 'attendance',
        status VARCHAR(20) DEFAULT 'active',
        valid_from TIMESTAMP NOT NULL,
        valid_until TIMESTAMP NOT NULL,
        allow_multiple_scans BOOLEAN DEFAULT 0,
        require_location BOOLEAN DEFAULT 0,
        max_scans INTEGER DEFAULT 1,
        scan_count INTEGER DEFAULT 0,
        unique_scans INTEGER DEFAULT 0,
        last_scan_at TIMESTAMP,
        location_name VARCHAR(150),
        latitude REAL,
        longitude REAL,
        location_radius REAL DEFAULT 100,
        event_name VARCHAR(150),
        description TEXT,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        FOREIGN KEY (organization_id) REFERENCES organizations(id),
        FOREIGN KEY (created_by) REFERENCES users(id)
    )
    """,
    # Attendance records (including failed geofence attempts)
    """
    CREATE TABLE IF NOT EXISTS attendance (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id INTEGER NOT NULL,
        organization_id INTEGER NOT NULL,
        qr_code_id INTEGER,
        scan_date DATE NOT NULL,
        scan_time TIME NOT NULL,
        scanned_at TIMESTAMP NOT NULL,
        status VARCHAR(20) DEFAULT 'present',
        failure_reason VARCHAR(50),
        latitude REAL,
        longitude REAL,
        distance_m REAL,
        device_info TEXT,
        points_awarded INTEGER DEFAULT 0,
        notes TEXT,
        marked_by INTEGER,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        FOREIGN KEY (user_id) REFERENCES users(id),
        FOREIGN KEY (organization_id) REFERENCES organizations(id),
        FOREIGN KEY (qr_code_id) REFERENCES qr_codes(id),
        FOREIGN KEY (marked_by) REFERENCES users(id)
    )
    """,
    # Leave requests
    """
    CREATE TABLE IF NOT EXISTS leaves (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id INTEGER NOT NULL,
        organization_id INTEGER NOT NULL,
        start_date DATE NOT NULL,
        end_date DATE NOT NULL,
        type VARCHAR(20) DEFAULT 'sick',
        reason TEXT NOT NULL,
        status VARCHAR(20) DEFAULT 'pending',
        reviewed_by INTEGER,
        reviewed_at TIMESTAMP,
        rejection_reason TEXT,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        FOREIGN KEY (user_id) REFERENCES users(id),
        FOREIGN KEY (organization_id) REFERENCES organizations(id),
        FOREIGN KEY (reviewed_by) REFERENCES users(id)
    )
    """,
    # Claimed rewards
    """
    CREATE TABLE IF NOT EXISTS reward_claims (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id INTEGER NOT NULL,
        reward_id INTEGER NOT NULL,
        reward_name VARCHAR(100) NOT NULL,
        category VARCHAR(30),
        points_spent INTEGER NOT NULL,
        status VARCHAR(20) DEFAULT 'active',
        claimed_at TIMESTAMP NOT NULL,
        expires_at TIMESTAMP,
        FOREIGN KEY (user_id) REFERENCES users(id)
    )
    """,
    # Unlocked achievements
    """
    CREATE TABLE IF NOT EXISTS user_achievements (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id INTEGER NOT NULL,
        achievement_id VARCHAR(50) NOT NULL,
        reward INTEGER DEFAULT 0,
        unlocked_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        FOREIGN KEY (user_id) REFERENCES users(id),
        UNIQUE(user_id, achievement_id)
    )
    """,
    # Notifications
    """
    CREATE TABLE IF NOT EXISTS notifications (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id INTEGER,
        organization_id INTEGER,
        title VARCHAR(100) NOT NULL,
        message TEXT NOT NULL,
        type VARCHAR(50) DEFAULT 'info',
        severity VARCHAR(20) DEFAULT 'info',
        is_read BOOLEAN DEFAULT 0,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        FOREIGN KEY (user_id) REFERENCES users(id),
        FOREIGN KEY (organization_id) REFERENCES organizations(id)
    )
    """,
    # System settings
    """
    CREATE TABLE IF NOT EXISTS system_settings (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        setting_key VARCHAR(100) UNIQUE NOT NULL,
        setting_value TEXT,
        description TEXT,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
    """,
]

INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_attendance_date ON attendance(scan_date)",
    "CREATE INDEX IF NOT EXISTS idx_attendance_user ON attendance(user_id, scan_date)",
    "CREATE INDEX IF NOT EXISTS idx_attendance_org ON attendance(organization_id, scan_date)",
    "CREATE INDEX IF NOT EXISTS idx_attendance_qr ON attendance(qr_code_id, user_id)",
    "CREATE INDEX IF NOT EXISTS idx_qr_codes_org ON qr_codes(organization_id)",
    "CREATE INDEX IF NOT EXISTS idx_qr_codes_status ON qr_codes(status)",
    "CREATE INDEX IF NOT EXISTS idx_members_user ON organization_members(user_id)",
    "CREATE INDEX IF NOT EXISTS idx_notifications_user ON notifications(user_id, is_read)",
    "CREATE INDEX IF NOT EXISTS idx_leaves_user ON leaves(user_id, status)",
    "CREATE INDEX IF NOT EXISTS idx_leaves_org ON leaves(organization_id, status)",
]

DEFAULT_SETTINGS = [
    ('system_name', 'QR Attendance', 'Name of the attendance system'),
    ('default_qr_validity_minutes', '15', 'Default QR session validity for new organizations'),
    ('default_location_radius', '100', 'Default geofence radius in meters'),
    ('late_threshold_minutes', '15', 'Minutes after session start to mark as late'),
    ('notification_enabled', '1', 'Enable attendance notifications'),
    ('export_formats', 'excel,csv,pdf', 'Supported export formats'),
]


class DatabaseManager:
    """
    Database management class for the QR attendance API.
    Handles connection management, schema creation and data manipulation
    with error logging and transaction support.
    """

    def __init__(self, db_path, seed_defaults=True, admin_email=None, admin_password=None):
        """
        Initialize the database manager with the specified database path.

        Args:
            db_path (str): Path to the SQLite database file or ':memory:'
            seed_defaults (bool): Insert a default admin account when none exists
            admin_email (str): Email of the seeded admin account
            admin_password (str): Password of the seeded admin account
        """
        self.db_path = str(db_path)
        self.logger = logging.getLogger(__name__)
        self._local = threading.local()
        self.seed_defaults = seed_defaults
        self.admin_email = admin_email or 'admin@attendance.local'
        self.admin_password = admin_password or 'Admin123'

        # Ensure database directory exists
        directory = os.path.dirname(self.db_path)
        if self.db_path != ':memory:' and directory:
            os.makedirs(directory, exist_ok=True)

        self.initialize_database()

    @contextmanager
    def get_connection(self):
        """
        Context manager for database connections.
        Connections are cached per thread and reused.

        Yields:
            sqlite3.Connection: Database connection object
        """
        if not hasattr(self._local, 'connection'):
            self._local.connection = sqlite3.connect(
                self.db_path,
                check_same_thread=False,
                timeout=30.0
            )
            self._local.connection.row_factory = sqlite3.Row
            self._local.connection.execute("PRAGMA foreign_keys = ON")

        try:
            yield self._local.connection
        except Exception as e:
            self._local.connection.rollback()
            self.logger.error(f"Database operation failed: {str(e)}")
            raise

    def initialize_database(self):
        """
        Create all tables, indexes and default data.
        Safe to call multiple times.
        """
        try:
            with self.get_connection() as conn:
                cursor = conn.cursor()

                for statement in SCHEMA:
                    cursor.execute(statement)
                for statement in INDEXES:
                    cursor.execute(statement)
                conn.commit()

                self._insert_default_data(cursor)
                conn.commit()

                self.logger.info("Database initialized successfully")

        except Exception as e:
            self.logger.error(f"Failed to initialize database: {str(e)}")
            raise

    def _insert_default_data(self, cursor):
        """
        Insert default system settings and, when enabled, the default admin user.

        Args:
            cursor: Database cursor object
        """
        cursor.execute("SELECT COUNT(*) FROM system_settings")
        if cursor.fetchone()[0] == 0:
            cursor.executemany("""
                INSERT INTO system_settings (setting_key, setting_value, description)
                VALUES (?, ?, ?)
            """, DEFAULT_SETTINGS)

        if self.seed_defaults:
            cursor.execute("SELECT COUNT(*) FROM users WHERE role = 'admin'")
            if cursor.fetchone()[0] == 0:
                cursor.execute("""
                    INSERT INTO users (email, password_hash, full_name, role, department)
                    VALUES (?, ?, ?, ?, ?)
                """, (self.admin_email, generate_password_hash(self.admin_password),
                      'System Administrator', 'admin', 'Administration'))
                self.logger.info(f"Default admin account created: {self.admin_email}")

    def execute_query(self, query, params=None, fetch_all=True):
        """
        Execute a SELECT query and return results.

        Args:
            query (str): SQL query string
            params (tuple): Query parameters
            fetch_all (bool): Whether to fetch all results or just one

        Returns:
            list or dict: Query results
        """
        try:
            with self.get_connection() as conn:
                cursor = conn.cursor()
                cursor.execute(query, params or ())

                if fetch_all:
                    return [dict(row) for row in cursor.fetchall()]
                result = cursor.fetchone()
                return dict(result) if result else None

        except Exception as e:
            self.logger.error(f"Query execution failed: {str(e)}")
            raise

    def execute_update(self, query, params=None):
        """
        Execute an INSERT, UPDATE, or DELETE query.

        Args:
            query (str): SQL query string
            params (tuple): Query parameters

        Returns:
            int: Last inserted row ID for INSERT, affected rows otherwise
        """
        try:
            with self.get_connection() as conn:
                cursor = conn.cursor()
                cursor.execute(query, params or ())
                conn.commit()

                if query.strip().upper().startswith('INSERT'):
                    return cursor.lastrowid
                return cursor.rowcount

        except Exception as e:
            self.logger.error(f"Update execution failed: {str(e)}")
            raise

    def execute_many(self, query, params_list):
        """
        Execute a query multiple times with different parameters.

        Args:
            query (str): SQL query string
            params_list (list): List of parameter tuples

        Returns:
            int: Number of affected rows
        """
        try:
            with self.get_connection() as conn:
                cursor = conn.cursor()
                cursor.executemany(query, params_list)
                conn.commit()
                return cursor.rowcount

        except Exception as e:
            self.logger.error(f"Batch execution failed: {str(e)}")
            raise

    @contextmanager
    def transaction(self):
        """
        Context manager for database transactions with automatic rollback on error.
        The write lock is taken up front so check-then-write sequences stay atomic.

        Yields:
            sqlite3.Connection: Database connection within transaction
        """
        with self.get_connection() as conn:
            if conn.in_transaction:
                conn.commit()
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
                conn.commit()
            except Exception as e:
                conn.rollback()
                self.logger.error(f"Transaction rolled back: {str(e)}")
                raise

    def get_system_setting(self, key, default_value=None):
        """
        Get a system setting value by key.

        Args:
            key (str): Setting key
            default_value: Default value if setting not found

        Returns:
            str: Setting value
        """
        try:
            result = self.execute_query(
                "SELECT setting_value FROM system_settings WHERE setting_key = ?",
                (key,),
                fetch_all=False
            )
            return result['setting_value'] if result else default_value

        except Exception as e:
            self.logger.error(f"Failed to get system setting {key}: {str(e)}")
            return default_value

    def get_all_system_settings(self):
        """Return every system setting row ordered by key."""
        return self.execute_query(
            "SELECT setting_key, setting_value, description, updated_at "
            "FROM system_settings ORDER BY setting_key"
        )

    def update_system_setting(self, key, value, description=None):
        """
        Update or insert a system setting.

        Args:
            key (str): Setting key
            value (str): Setting value
            description (str): Setting description

        Returns:
            bool: Success status
        """
        try:
            with self.transaction() as conn:
                cursor = conn.cursor()
                cursor.execute("SELECT id FROM system_settings WHERE setting_key = ?", (key,))

                if cursor.fetchone():
                    cursor.execute("""
                        UPDATE system_settings
                        SET setting_value = ?, description = COALESCE(?, description),
                            updated_at = CURRENT_TIMESTAMP
                        WHERE setting_key = ?
                    """, (str(value), description, key))
                else:
                    cursor.execute("""
                        INSERT INTO system_settings (setting_key, setting_value, description)
                        VALUES (?, ?, ?)
                    """, (key, str(value), description))

                return True

        except Exception as e:
            self.logger.error(f"Failed to update system setting {key}: {str(e)}")
            return False

    def close_all_connections(self):
        """Close the current thread's database connection."""
        try:
            if hasattr(self._local, 'connection'):
                self._local.connection.close()
                del self._local.connection
        except Exception as e:
            self.logger.error(f"Error closing connections: {str(e)}")
