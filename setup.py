"""
SlackBridge Setup Configuration

Makes SlackBridge installable as a Python package. The host modules live in
'src' and the bundled plugin is installed as the top-level 'slack_bridge'
package, the name the plugin manager imports it under.
"""

from setuptools import setup, find_packages
from pathlib import Path

# Read the README file
readme_file = Path(__file__).parent / "README.md"
long_description = readme_file.read_text(encoding="utf-8") if readme_file.exists() else ""

# Read requirements
requirements_file = Path(__file__).parent / "requirements.txt"
requirements = []
if requirements_file.exists():
    requirements = [
        line.strip()
        for line in requirements_file.read_text(encoding="utf-8").splitlines()
        if line.strip() and not line.startswith("#")
    ]

setup(
    name="slackbridge",
    version="1.0.0",
    description="Slack adapter plugin and minimal plugin host",
    long_description=long_description,
    long_description_content_type="text/markdown",
    author="SlackBridge Team",
    license="MIT",

    # Package discovery
    packages=find_packages(where="src") + ["slack_bridge"],
    package_dir={"": "src", "slack_bridge": "plugins/slack_bridge"},
    py_modules=["main"],

    # Include package data
    include_package_data=True,

    # Dependencies
    install_requires=requirements,
    extras_require={
        "test": [
            "pytest>=7.0",
            "pytest-asyncio>=0.21",
            "hypothesis>=6.0",
            "httpx>=0.24",
        ],
    },

    # Python version requirement
    python_requires=">=3.10",

    # Entry points
    entry_points={
        "console_scripts": [
            "slackbridge=main:main",
        ],
    },

    # Classifiers
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Communications :: Chat",
    ],

    # Keywords
    keywords="slack bot plugin gateway",
)
