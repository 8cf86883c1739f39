# Override env BEFORE any test module imports app/storage, so the engine points
# at a scratch SQLite file instead of ./fittrack.db
import os
import tempfile

os.environ.pop("CLOUD_SQL_CONNECTION_NAME", None)
os.environ.pop("JWT_SECRET", None)  # tests run on the built-in development secret
os.environ["FITTRACK_DB"] = os.path.join(tempfile.mkdtemp(), "fittrack_test.db")
os.environ["FITTRACK_STORAGE"] = "sql"
os.environ["FITTRACK_TIMEZONE"] = "UTC"
os.environ["BCRYPT_ROUNDS"] = "4"  # keep hashing fast in tests
