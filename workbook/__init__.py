import os
from pathlib import Path
from typing import List, Union


def load_env_file(path: Union[str, Path] = ".env") -> List[str]:
	"""Copy ``KEY=value`` lines from ``path`` into ``os.environ``.

	Variables already present in the environment are left alone. Returns the
	names that were set.
	"""
	env_path = Path(path)
	if not env_path.is_file():
		return []
	loaded = []
	for raw in env_path.read_text(encoding="utf-8").splitlines():
		line = raw.strip()
		if line.startswith("export "):
			line = line[len("export "):].lstrip()
		if not line or line.startswith("#") or "=" not in line:
			continue
		name, value = (part.strip() for part in line.split("=", 1))
		if len(value) >= 2 and value[0] == value[-1] and value[0] in "\"'":
			value = value[1:-1]
		if name and name not in os.environ:
			os.environ[name] = value
			loaded.append(name)
	return loaded


# pytest runs stay hermetic
if not os.getenv("PYTEST_CURRENT_TEST"):
	load_env_file(os.getenv("WORKBOOK_ENV_FILE", ".env"))
