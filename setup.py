from setuptools import setup


setup(
    name="budget-ingest",
    version="0.3.0",
    description="Schema-sniffing ingestion of ERP budget and cost-report spreadsheets into reconciled budget trees",
    packages=["budget_ingest"],
    python_requires=">=3.10",
    install_requires=[
        "pandas",
        "chardet",
        "openpyxl",
    ],
    extras_require={
        "excel-legacy": ["xlrd"],
        "ods": ["odfpy"],
        "all": ["xlrd", "odfpy"],
    },
    entry_points={
        "console_scripts": [
            "budget-ingest=budget_ingest.cli:main",
        ]
    },
)
