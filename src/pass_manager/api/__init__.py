# API Module - local HTTP surface for the vault UI
