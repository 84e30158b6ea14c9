"""Setup script for mediavault."""

from setuptools import setup, find_namespace_packages
from pathlib import Path

# Read README
readme_file = Path(__file__).parent / "README.md"
long_description = readme_file.read_text(encoding="utf-8") if readme_file.exists() else ""

setup(
    name="mediavault",
    version="0.1.0",
    description="Self-hosted photo and video library indexer: metadata, thumbnails, faces and sharing",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=find_namespace_packages(where="src", include=["mediavault*"]),
    package_dir={"": "src"},
    package_data={"mediavault.indexer": ["schema/*.sql"]},
    python_requires=">=3.11",
    install_requires=[
        "fastapi>=0.104.0",
        "uvicorn[standard]>=0.24.0",
        "pydantic>=2.5.0",
        "platformdirs>=4.0.0",
        "toml>=0.10.2",
        "pillow>=10.1.0",
        "filetype>=1.2.0",
        "numpy>=1.24.0",
        "blurhash>=1.1.4",
    ],
    extras_require={
        "faces": [
            "torch>=2.0.0",
            "facenet-pytorch>=2.5.3",
        ],
        "dev": [
            "pytest>=7.4.0",
            "pytest-cov>=4.1.0",
            "httpx>=0.25.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "mediavault=mediavault.indexer.cli:main",
        ],
    },
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: End Users/Desktop",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
    ],
    keywords="photos videos library thumbnails faces indexer",
)
