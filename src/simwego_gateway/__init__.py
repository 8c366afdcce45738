"""SimWeGo Gateway - multi-tenant authentication broker for the Monty eSIM API"""

__version__ = "1.0.0"
