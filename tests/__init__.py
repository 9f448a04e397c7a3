import os
import tempfile

# Keep logs and settings written during tests out of the real user data folder. Must run before pt is imported.
os.environ.setdefault("PILLTRACKER_HOME", tempfile.mkdtemp(prefix="pilltracker-tests-"))
