from ssh_remote_file.__main__ import main

if __name__ == "__main__":
    raise SystemExit(main())
