import re
from pathlib import Path

from setuptools import find_namespace_packages, setup

name = "pg_scrub"
version = re.search(
    r'^PG_SCRUB_VERSION = "([^"]+)"',
    (Path(__file__).parent / name / "version.py").read_text(),
    re.MULTILINE,
).group(1)

install_requires = [
    "asyncpg",
    "pydantic>=2",
    "pyyaml",
    "prettytable",
    "concurrent-log-handler",
    "faker",
    "bcrypt",
]


if __name__ == "__main__":
    setup(
        name=name,
        version=version,
        description="PostgreSQL PII sanitization tool",
        classifiers=[
            "Intended Audience :: Developers",
            "Intended Audience :: System Administrators",
            "Programming Language :: Python",
            "Programming Language :: Python :: 3",
            "Topic :: Database",
        ],
        license="MIT",
        keywords="postgresql pii sanitization scrubbing anonymization tool",
        python_requires=">=3.10",
        packages=find_namespace_packages(include=["pg_scrub", "pg_scrub.*"]),
        install_requires=install_requires,
        extras_require={
            "test": ["pytest"],
        },
        entry_points={
            "console_scripts": [
                "pg_scrub = pg_scrub.cli:main",
            ],
        },
    )
