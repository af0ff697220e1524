# Purchase-to-download pipeline: errors, download tokens and the agents in
# pipeline.agents. Kept import-free; storage and services import from here.
