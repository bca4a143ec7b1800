"""AssetVerse backend: company asset inventory, request workflow and subscription packages."""
