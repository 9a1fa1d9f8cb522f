DANGEROUS_TOKENS = [
    "powershell",
    "invoke-webrequest",
    "start-process",
    "mshta",
    "cmd",
    "wget",
    "curl",
    "bitsadmin",
    "certutil",
    "rundll32",
    "iex",
    "invoke-expression",
]

# Deliberately broad: "id" and "#" match a lot of ordinary text.
HARDCODED_KEYWORDS = [
    "verification",
    "id",
    "#",
    "powershell",
    "mshta.exe",
    "-noprofile",
    "-executionpolicy",
    "-enc",
    "invoke-expression",
    "iex",
]

TOKEN_CHAIN_MIN = 2

SIGNATURE_PATTERNS = [
    {
        "id": "MALICIOUS_RE",
        "pattern": (
            r"\b(powershell|invoke-webrequest|start-process|mshta(\.exe)?|cmd(\.exe)?|wget|curl"
            r"|bitsadmin|certutil|rundll32|iex|invoke-expression|downloadstring)\b"
        ),
        "explanation": "Names a shell, downloader or LOLBin commonly abused to run remote code",
    },
    {
        "id": "POWERSHELL_FLAGS",
        "pattern": r"-(?:noprofile|executionpolicy|encodedcommand|enc|command)\b",
        "explanation": "Uses PowerShell flags that hide or bypass execution safeguards",
    },
    {
        "id": "HTA_APPDATA",
        "pattern": r"(%appdata%|\\appdata\\|\.hta)",
        "explanation": "Points at an HTA application or the AppData staging folder",
    },
    {
        "id": "URL_THEN_CMD",
        # Two passes: find the URL, then look for an operator after it on the same line.
        "pattern": r"https?://\S",
        "follow": r";|&&|\||`|\$\([^)\n]*\)|\bstart-process\b",
        "explanation": "Fetches a URL and chains it into further shell commands",
    },
]

RULE_EXPLANATIONS = {
    "TOKEN_CHAIN": "Chains several command-line tools that are rarely seen together in normal text",
    "HARDCODED_KEYWORD": "Contains a keyword from the built-in lure list",
    "USER_KEYWORD": "Contains a keyword from your custom list",
}

ALERT_TITLE = "⚠ Suspicious Clipboard Activity"

SAFE_ACTIONS = [
    "Do not paste this text into Win+R, a terminal, PowerShell or the address bar.",
    "Legitimate sites never ask you to run commands to prove you are human.",
    "Close the page and report it to your security team with the downloaded report.",
    "If you already ran the command, disconnect from the network and contact IT.",
]
