from setuptools import find_packages, setup

VERSION = "1.0.0"


def readme():
	with open("README.md", "r", encoding="utf-8") as fh:
		return fh.read()


setup(
	name="otterserve",
	version=VERSION,
	description="A small HTTP/1.1 daemon serving local directories under URL prefixes, with optional basic authentication",
	long_description=readme(),
	long_description_content_type="text/markdown",
	packages=find_packages(where="src/py"),
	package_dir={"": "src/py"},
	classifiers=[
		"Development Status :: 4 - Beta",
		"Intended Audience :: System Administrators",
		"License :: OSI Approved :: MIT License",
		"Operating System :: POSIX",
		"Programming Language :: Python :: 3",
		"Programming Language :: Python :: 3.11",
		"Programming Language :: Python :: 3.12",
		"Topic :: Internet :: WWW/HTTP :: HTTP Servers",
		"Topic :: System :: Networking",
	],
	python_requires=">=3.11",
	install_requires=[
		"mypy-extensions",
		"PyYAML",
	],
	extras_require={
		"dev": [
			"mypy",
			"types-PyYAML",
			"flake8",
			"bandit",
		],
		"test": [
			"pytest",
		],
	},
	entry_points={
		"console_scripts": [
			"otterserve=otterserve.__main__:main",
		],
	},
	include_package_data=True,
	zip_safe=False,
)
