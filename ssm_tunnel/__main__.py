from ssm_tunnel.cli import main

if __name__ == "__main__":
    main()
