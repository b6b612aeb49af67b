from setuptools import setup


setup(
    name="invoice-checker",
    version="0.1.0",
    description="Reconcile supplier ledger totals and items against quotation price lists and Shopify orders",
    packages=["invoice_checker"],
    install_requires=[
        "pandas",
        "chardet",
        "openpyxl",
        "streamlit",
        "requests",
    ],
    extras_require={
        "excel-legacy": ["xlrd"],
        "ods": ["odfpy"],
        "all": ["xlrd", "odfpy"],
        "test": ["pytest"],
    },
    entry_points={
        "console_scripts": [
            "invoice-checker=invoice_checker.cli:main",
        ]
    },
)
